from __future__ import annotations

import pytest

from alchemy_tier_builder import ElementPageParser, clean_image_url, normalize_name

from .conftest import FIRE_IMG, STEAM_IMG, WATER_IMG


@pytest.fixture
def parsed(elements_page_html: str):
    return ElementPageParser().parse(elements_page_html)


def test_parses_rows_and_inserts_placeholder_ingredients(parsed) -> None:
    assert set(parsed) == {"Water", "Fire", "Steam", "Air", "Energy", "Geyser", "Earth"}
    assert parsed["Air"].recipes == []
    assert parsed["Earth"].image_url is None


def test_recipes_come_from_list_items(parsed) -> None:
    steam = [recipe.ingredients for recipe in parsed["Steam"].recipes]

    assert steam == [["Water", "Fire"], ["Air", "Energy"]]


def test_plain_text_recipes_are_split_on_plus(parsed) -> None:
    # The single-ingredient list item is not a recipe
    assert [recipe.ingredients for recipe in parsed["Geyser"].recipes] == [["Steam", "Earth"]]


def test_image_urls_are_read_from_data_src_without_query(parsed) -> None:
    assert parsed["Water"].image_url == WATER_IMG
    assert parsed["Fire"].image_url == FIRE_IMG
    assert parsed["Steam"].image_url == STEAM_IMG
    assert parsed["Geyser"].image_url is None


def test_ignores_tables_that_are_not_list_tables() -> None:
    html = '<table><tr><th>h</th></tr><tr><td><a title="Nope">Nope</a></td><td>x</td></tr></table>'

    assert ElementPageParser().parse(html) == {}


def test_names_are_matched_case_and_whitespace_insensitively() -> None:
    html = """
    <table class="list-table">
      <tr><th>Element</th><th>Recipes</th></tr>
      <tr><td><a title="Mud">Mud</a></td>
          <td><ul><li><a title="water">water</a> + <a title="Earth">Earth</a></li></ul></td></tr>
      <tr><td><a title="  Water ">Water</a></td><td>Available from the start.</td></tr>
      <tr><td><a title="Hot   Spring">Hot Spring</a></td>
          <td><ul><li><a title="WATER">WATER</a> + <a title="mud">mud</a></li></ul></td></tr>
    </table>
    """

    elements = ElementPageParser().parse(html)

    assert set(elements) == {"Mud", "water", "Earth", "Hot Spring"}
    assert [r.ingredients for r in elements["Hot Spring"].recipes] == [["water", "Mud"]]


def test_repeated_rows_merge_recipes_and_keep_first_image() -> None:
    html = """
    <table class="list-table">
      <tr><th>Element</th><th>Recipes</th></tr>
      <tr><td><span class="icon-hover"><a title="Life">Life</a></span></td>
          <td><ul><li><a title="Love">Love</a> + <a title="Time">Time</a></li></ul></td></tr>
      <tr><td><span class="icon-hover"><span typeof="mw:File"><img src="https://img.example/life.png?x=1"/></span>
              <a title="Life">Life</a></span></td>
          <td><ul><li><a title="Swamp">Swamp</a> + <a title="Energy">Energy</a></li></ul></td></tr>
      <tr><td><span class="icon-hover"><span typeof="mw:File"><img src="https://img.example/other.png"/></span>
              <a title="Life">Life</a></span></td><td></td></tr>
    </table>
    """

    life = ElementPageParser().parse(html)["Life"]

    assert [r.ingredients for r in life.recipes] == [["Love", "Time"], ["Swamp", "Energy"]]
    assert life.image_url == "https://img.example/life.png"


def test_falls_back_to_cell_text_for_the_element_name() -> None:
    html = """
    <table class="list-table">
      <tr><th>Element</th><th>Recipes</th></tr>
      <tr><td>  Primordial   Soup </td><td><ul><li>Sea + Volcano</li></ul></td></tr>
      <tr><td>   </td><td><ul><li>Ignored + Row</li></ul></td></tr>
    </table>
    """

    elements = ElementPageParser().parse(html)

    assert set(elements) == {"Primordial Soup", "Sea", "Volcano"}


def test_clean_image_url_strips_query() -> None:
    assert clean_image_url("https://x/a.png/revision/latest?cb=1") == "https://x/a.png/revision/latest"
    assert clean_image_url("https://x/a.png") == "https://x/a.png"


def test_normalize_name() -> None:
    assert normalize_name("  Hot \n  Spring ") == "Hot Spring"
