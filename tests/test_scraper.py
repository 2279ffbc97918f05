"""Tests for search and article scraping."""
import httpx
import pytest
import respx

from app.services.scraper import WebScraper

BASE_URL = "https://site.test"

SEARCH_PAGE_1 = """
<html><body>
  <a class="card-item" href="/fotossintese/"><span class="card-title">Fotossíntese</span></a>
  <a class="card-item" href="https://site.test/clorofila/"><span class="card-title">Clorofila</span></a>
  <a class="card-item" href="/sem-titulo/"></a>
</body></html>
"""

SEARCH_PAGE_2 = """
<html><body>
  <a class="card-item" href="/respiracao-celular/" title="Respiração celular"></a>
  <a class="card-item" href="/fotossintese/"><span class="card-title">Fotossíntese</span></a>
</body></html>
"""

ARTICLE = """
<html><head>
  <meta property="article:published_time" content="2022-08-15T09:30:00-03:00">
  <script type="application/ld+json">
    {"@context": "https://schema.org", "@graph": [{"@type": "Article", "author": {"name": "Ana Souza"}}]}
  </script>
</head><body>
  <header><p>Menu principal</p></header>
  <div class="main-content">
    <article>
      <h1>Fotossíntese</h1>
      <p>A fotossíntese é o processo pelo qual plantas produzem energia.</p>
      <figure>
        <img src="/img/folha.jpg" alt="folha">
        <figcaption>Esquema da fotossíntese</figcaption>
      </figure>
      <p>Ela ocorre nos cloroplastos.</p>
      <img data-src="https://cdn.site.test/clorofila.png" alt="Molécula de clorofila">
      <img src="/img/sem-alt.png">
    </article>
  </div>
  <footer><p>Todos os direitos reservados</p></footer>
</body></html>
"""


@pytest.fixture
def scraper() -> WebScraper:
    return WebScraper(base_url=BASE_URL, timeout=5, max_pages=3)


def test_parse_search_results(scraper: WebScraper):
    results = scraper.parse_search_results(SEARCH_PAGE_1)
    assert [(r.title, r.url) for r in results] == [
        ("Fotossíntese", "https://site.test/fotossintese/"),
        ("Clorofila", "https://site.test/clorofila/"),
    ]


@pytest.mark.asyncio
@respx.mock
async def test_search_first_page_only(scraper: WebScraper):
    route = respx.get(scraper.search_url("fotossíntese")).mock(
        return_value=httpx.Response(200, text=SEARCH_PAGE_1)
    )
    results = await scraper.search("fotossíntese")
    assert len(results) == 2
    assert route.call_count == 1


@pytest.mark.asyncio
@respx.mock
async def test_search_all_pages_dedupes_and_stops(scraper: WebScraper):
    respx.get(scraper.search_url("planta", 1)).mock(return_value=httpx.Response(200, text=SEARCH_PAGE_1))
    respx.get(scraper.search_url("planta", 2)).mock(return_value=httpx.Response(200, text=SEARCH_PAGE_2))
    page3 = respx.get(scraper.search_url("planta", 3)).mock(return_value=httpx.Response(404))

    results = await scraper.search("planta", all_pages=True)

    assert [r.title for r in results] == ["Fotossíntese", "Clorofila", "Respiração celular"]
    assert page3.called


@pytest.mark.asyncio
@respx.mock
async def test_search_error_returns_empty(scraper: WebScraper):
    respx.get(scraper.search_url("x")).mock(side_effect=httpx.ConnectError("down"))
    assert await scraper.search("x") == []


def test_parse_page(scraper: WebScraper):
    page = scraper.parse_page("https://site.test/fotossintese/", ARTICLE)

    assert page.title == "Fotossíntese"
    assert page.content == (
        "A fotossíntese é o processo pelo qual plantas produzem energia.\n\n"
        "Ela ocorre nos cloroplastos."
    )
    assert page.author == "Ana Souza"
    assert page.published_at == "2022-08-15T09:30:00-03:00"
    assert [(i.src, i.caption) for i in page.images] == [
        ("https://site.test/img/folha.jpg", "Esquema da fotossíntese"),
        ("https://cdn.site.test/clorofila.png", "Molécula de clorofila"),
        ("https://site.test/img/sem-alt.png", ""),
    ]
    assert page.error is False


def test_parse_page_keeps_article_images_without_alt(scraper: WebScraper):
    html = '<article><h1>T</h1><p>texto</p><img src="/img/a.png"></article>'
    page = scraper.parse_page("https://site.test/t/", html)
    assert [(i.src, i.caption) for i in page.images] == [("https://site.test/img/a.png", "")]


def test_parse_page_content_image_outside_article(scraper: WebScraper):
    html = """
    <div class="main-content"><div class="content">
      <p>texto</p><img src="/img/b.png" alt="Diagrama">
    </div></div>
    """
    page = scraper.parse_page("https://site.test/t/", html)
    assert [(i.src, i.caption) for i in page.images] == [("https://site.test/img/b.png", "Diagrama")]


def test_parse_page_keeps_repeated_paragraphs(scraper: WebScraper):
    html = "<article><p>Refrão.</p><p>Verso.</p><p>Refrão.</p></article>"
    page = scraper.parse_page("https://site.test/t/", html)
    assert page.content == "Refrão.\n\nVerso.\n\nRefrão."


def test_parse_page_fallback_skips_page_chrome(scraper: WebScraper):
    html = """
    <html><body>
      <nav><p>Início</p></nav>
      <div class="sidebar"><p>Leia também</p></div>
      <div><p>Texto solto do artigo.</p></div>
      <footer><p>Rodapé</p></footer>
    </body></html>
    """
    page = scraper.parse_page("https://site.test/x/", html)
    assert page.content == "Texto solto do artigo."
    assert page.title == ""
    assert page.author == ""


@pytest.mark.asyncio
@respx.mock
async def test_scrape_page_failure_sets_error(scraper: WebScraper):
    respx.get("https://site.test/quebrado/").mock(return_value=httpx.Response(500))
    page = await scraper.scrape_page("https://site.test/quebrado/")
    assert page.error is True
    assert page.url == "https://site.test/quebrado/"
    assert page.content == ""
