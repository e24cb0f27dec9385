#!/usr/bin/env python3
"""
Little Alchemy 2 Element Tier Builder

This script fetches the Little Alchemy 2 element table from the fandom wiki,
builds the recipe graph, assigns every element a tier based on how deep its
recipes go, caches element images locally and outputs a JSON file.

Key behavior: an element is resolved as soon as ANY of its recipes has all of
its ingredients resolved. Its tier is then fixed to 1 + the highest ingredient
tier among the recipes that became usable in that same pass, and never
revisited. Elements that never resolve (circular or unknown ingredients) fall
back to tier 1 and are reported.

Usage:
    python alchemy_tier_builder.py                       # Generate full JSON output
    python alchemy_tier_builder.py --visualize "Steam"   # Visualize a specific element
    python alchemy_tier_builder.py --refresh-cache       # Force refresh of the wiki page
"""

import argparse
import hashlib
import json
import os
import re
import tempfile
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry


# Configuration
ELEMENTS_PAGE_URL = "https://little-alchemy.fandom.com/wiki/Elements_(Little_Alchemy_2)"
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)
REQUEST_TIMEOUT = 30  # seconds
RATE_LIMIT_DELAY = 0.2  # seconds between image requests
MIN_IMAGE_BYTES = 100
MAX_TIER_ITERATIONS = 100

# Cache configuration
CACHE_DIR = Path(__file__).parent / "cache"
PAGE_CACHE_FILENAME = "elements_page.html"
CACHE_MAX_AGE_DAYS = 7

DEFAULT_OUTPUT = "output/elements.json"
DEFAULT_IMAGES_DIR = "images"

# Characters that are not allowed in cached image file names
UNSAFE_FILENAME_CHARS = '<>:"/\\|?*'


@dataclass(frozen=True)
class RetryPolicy:
    """How many times and how patiently an HTTP request is retried."""
    max_attempts: int = 3
    backoff_factor: float = 1.0
    status_forcelist: Tuple[int, ...] = (429, 500, 502, 503, 504)

    def to_urllib3(self) -> Retry:
        return Retry(
            total=max(self.max_attempts - 1, 0),
            backoff_factor=self.backoff_factor,
            status_forcelist=self.status_forcelist,
            allowed_methods=frozenset(["GET"]),
            raise_on_status=False,
        )


DEFAULT_RETRY_POLICY = RetryPolicy()


@dataclass
class Recipe:
    """One way to make an element. Ingredients are names, not links."""
    ingredients: List[str]


@dataclass
class Element:
    """Represents a Little Alchemy element with its recipes and tier."""
    name: str
    image_url: Optional[str] = None
    local_image: Optional[str] = None
    recipes: List[Recipe] = field(default_factory=list)
    tier: int = 1
    resolved: bool = False


@dataclass(frozen=True)
class TierDiagnostic:
    """An element that needed the tier 1 fallback, and why."""
    name: str
    reason: str
    missing: Tuple[str, ...] = ()
    blocked_by: Tuple[str, ...] = ()


@dataclass
class TierResolution:
    elements: Dict[str, Element]
    diagnostics: List[TierDiagnostic]
    iterations: int
    converged: bool


def normalize_name(name: str) -> str:
    """Strip and collapse whitespace runs to a single space."""
    return re.sub(r"\s+", " ", name).strip()


def clean_image_url(image_url: str) -> str:
    """Drop the query string (fandom appends scaling and cache busters)."""
    return image_url.split("?", 1)[0]


class CacheManager:
    """Manages local caching of the wiki page."""

    def __init__(self, cache_dir: Path = CACHE_DIR):
        self.cache_dir = cache_dir
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def is_cache_valid(self, cache_file: Path, max_age_days: int = CACHE_MAX_AGE_DAYS) -> bool:
        """Check if cache file exists and is not too old."""
        if not cache_file.exists():
            return False

        age_seconds = time.time() - cache_file.stat().st_mtime
        age_days = age_seconds / (60 * 60 * 24)
        return age_days < max_age_days

    def load_cache(self, cache_file: Path) -> Optional[str]:
        """Load page HTML from cache file."""
        if not cache_file.exists():
            return None

        try:
            with open(cache_file, "r", encoding="utf-8") as f:
                return f.read()
        except (OSError, UnicodeDecodeError) as e:
            print(f"  Warning: Failed to read cache file {cache_file}: {e}")
            return None

    def save_cache(self, cache_file: Path, data: str):
        """Save page HTML to cache file."""
        with open(cache_file, "w", encoding="utf-8") as f:
            f.write(data)
        print(f"  Cached to {cache_file}")


def build_session(retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY) -> requests.Session:
    """Create a session that retries transient failures per the given policy."""
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=retry_policy.to_urllib3())
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update({
        "User-Agent": USER_AGENT,
        "Accept-Language": "en-US,en;q=0.9",
    })
    return session


class WikiPageClient:
    """Client for fetching the elements page from the wiki."""

    def __init__(self, cache_manager: CacheManager, session: Optional[requests.Session] = None,
                 page_url: str = ELEMENTS_PAGE_URL):
        self.session = session if session is not None else build_session()
        self.cache = cache_manager
        self.page_url = page_url
        self.cache_file = cache_manager.cache_dir / PAGE_CACHE_FILENAME

    def fetch_elements_page(self, force_refresh: bool = False) -> str:
        """Fetch the elements page HTML, using cache if available.

        Any HTTP failure here is fatal: without the page there is nothing to build.
        """
        if not force_refresh and self.cache.is_cache_valid(self.cache_file):
            print("Loading elements page from cache...")
            html = self.cache.load_cache(self.cache_file)
            if html:
                print(f"  Loaded {len(html)} characters from cache")
                return html
            print("  Cached page is empty or unreadable, refetching...")

        print(f"Fetching elements page from {self.page_url}...")
        response = self.session.get(self.page_url, timeout=REQUEST_TIMEOUT)
        response.raise_for_status()

        html = response.text
        self.cache.save_cache(self.cache_file, html)
        return html


class ElementPageParser:
    """Turns the wiki's element tables into an element graph."""

    def __init__(self):
        self.elements: Dict[str, Element] = {}
        # casefolded name -> graph key, so "fire" and "Fire" are one element
        self._keys: Dict[str, str] = {}

    def _key_for(self, name: str) -> str:
        name = normalize_name(name)
        return self._keys.setdefault(name.casefold(), name)

    def _ensure_element(self, name: str) -> Element:
        key = self._key_for(name)
        if key not in self.elements:
            self.elements[key] = Element(name=key)
        return self.elements[key]

    @staticmethod
    def _anchor_names(anchors) -> List[str]:
        names = []
        for a in anchors:
            title = (a.get("title") or "").strip()
            if title:
                names.append(title)
                continue
            text = a.get_text(strip=True)
            if text and text != "+":
                names.append(text)
        return names

    def _parse_result_name(self, cell) -> str:
        # Later anchors win, matching how the icon and label links are laid out
        names = self._anchor_names(cell.select("span.icon-hover a"))
        if not names:
            names = self._anchor_names(cell.find_all("a"))
        if names:
            return normalize_name(names[-1])
        return normalize_name(cell.get_text())

    @staticmethod
    def _parse_image_url(cell) -> Optional[str]:
        image_url = None
        for img in cell.select('span.icon-hover span[typeof="mw:File"] img'):
            src = img.get("data-src") or img.get("src")
            if src:
                image_url = clean_image_url(src)
        return image_url

    def _parse_ingredients(self, li) -> List[str]:
        ingredients = self._anchor_names(li.find_all("a"))
        if not ingredients:
            ingredients = self._anchor_names(li.select("span.icon-hover a"))
        if not ingredients:
            ingredients = [part for part in li.get_text().split("+") if part.strip()]
        return [normalize_name(name) for name in ingredients if normalize_name(name)]

    def parse(self, html: str) -> Dict[str, Element]:
        """Parse the page and return the element graph.

        Ingredient names seen before (or without) their own row are added as
        placeholder elements with no recipes.
        """
        soup = BeautifulSoup(html, "html.parser")
        print(f"  Found {len(soup.find_all('table'))} tables total")
        list_tables = soup.select("table.list-table")
        print(f"  Found {len(list_tables)} list-tables")

        recipe_count = 0
        for table in list_tables:
            for row in table.find_all("tr")[1:]:
                cells = row.find_all("td")
                if len(cells) < 2:
                    continue

                result_name = self._parse_result_name(cells[0])
                if not result_name:
                    continue

                image_url = self._parse_image_url(cells[0])
                element = self._ensure_element(result_name)
                if image_url and not element.image_url:
                    element.image_url = image_url

                for li in cells[1].select("ul li"):
                    ingredients = self._parse_ingredients(li)
                    if len(ingredients) < 2:
                        continue
                    keys = [self._ensure_element(name).name for name in ingredients]
                    element.recipes.append(Recipe(ingredients=keys))
                    recipe_count += 1

        print(f"  Parsed {len(self.elements)} elements with {recipe_count} recipes")
        return self.elements


def resolve_tiers(elements: Dict[str, Element], max_iterations: int = MAX_TIER_ITERATIONS) -> TierResolution:
    """
    Assign every element a tier by iterative relaxation.

    Elements without recipes are tier 1. In each pass, an unresolved element
    whose recipes include at least one with all ingredients resolved (as of the
    end of the previous pass) gets tier 1 + the highest ingredient tier over
    those usable recipes. Results of a pass only become visible in the next
    one, so the outcome does not depend on dict order.

    A resolved tier is final: a recipe that becomes usable later, even with
    lower ingredient tiers, is not reconsidered.

    Elements still unresolved when a pass makes no progress or the iteration
    cap is hit are set to tier 1 and reported as diagnostics.

    The input graph is not modified; annotated copies are returned.
    """
    if max_iterations < 0:
        raise ValueError(f"max_iterations must be >= 0, got {max_iterations}")

    result = {
        name: replace(element, recipes=list(element.recipes), tier=1, resolved=False)
        for name, element in elements.items()
    }

    tiers: Dict[str, int] = {name: 1 for name, element in result.items() if not element.recipes}
    pending = sorted(name for name in result if name not in tiers)

    iterations = 0
    converged = True
    while pending:
        if iterations >= max_iterations:
            # Only a cut-off if another pass would still have resolved something
            converged = not _relax(pending, result, tiers)
            break
        iterations += 1

        newly_resolved = _relax(pending, result, tiers)
        if not newly_resolved:
            break

        tiers.update(newly_resolved)
        pending = [name for name in pending if name not in newly_resolved]

    diagnostics = _diagnose(pending, result, tiers)
    for name in pending:
        tiers[name] = 1

    for name, element in result.items():
        element.tier = tiers[name]
        element.resolved = True

    return TierResolution(
        elements=result,
        diagnostics=diagnostics,
        iterations=iterations,
        converged=converged,
    )


def _relax(pending: List[str], elements: Dict[str, Element], tiers: Dict[str, int]) -> Dict[str, int]:
    """Run one pass: the tiers pending elements get from what tiers already holds.

    tiers is only read; the caller applies the result at the pass boundary.
    """
    newly_resolved: Dict[str, int] = {}
    for name in pending:
        best = 0
        for recipe in elements[name].recipes:
            if not all(ingredient in tiers for ingredient in recipe.ingredients):
                continue
            recipe_tier = max((tiers[ingredient] for ingredient in recipe.ingredients), default=0)
            best = max(best, recipe_tier)
        if best > 0:
            newly_resolved[name] = best + 1
    return newly_resolved


def _diagnose(pending: List[str], elements: Dict[str, Element], tiers: Dict[str, int]) -> List[TierDiagnostic]:
    """Explain why each pending element never resolved."""
    missing: Dict[str, Set[str]] = {}
    blocked_by: Dict[str, Set[str]] = {}
    for name in pending:
        missing[name] = set()
        blocked_by[name] = set()
        for recipe in elements[name].recipes:
            for ingredient in recipe.ingredients:
                if ingredient not in elements:
                    missing[name].add(ingredient)
                elif ingredient not in tiers:
                    blocked_by[name].add(ingredient)

    diagnostics = []
    for name in pending:
        if missing[name]:
            reason = "references unknown ingredient(s)"
        elif _reaches(name, blocked_by):
            reason = "circular dependency"
        elif blocked_by[name]:
            reason = "depends on unresolved ingredient(s)"
        elif not any(recipe.ingredients for recipe in elements[name].recipes):
            reason = "recipes have no ingredients"
        else:
            reason = "iteration cap reached"
        diagnostics.append(TierDiagnostic(
            name=name,
            reason=reason,
            missing=tuple(sorted(missing[name])),
            blocked_by=tuple(sorted(blocked_by[name])),
        ))
    return diagnostics


def _reaches(start: str, edges: Dict[str, Set[str]]) -> bool:
    """True if start can get back to itself by following edges."""
    stack = list(edges.get(start, ()))
    seen: Set[str] = set()
    while stack:
        node = stack.pop()
        if node == start:
            return True
        if node in seen:
            continue
        seen.add(node)
        stack.extend(edges.get(node, ()))
    return False


def image_filename(element_name: str, image_url: str) -> str:
    """Build the cache file name: safe element name + short hash of the URL."""
    extension = ".png"
    if ".jpg" in image_url or ".jpeg" in image_url:
        extension = ".jpg"

    url_hash = hashlib.md5(image_url.encode("utf-8")).hexdigest()[:8]
    safe_name = "".join("_" if char in UNSAFE_FILENAME_CHARS else char for char in element_name)
    return f"{safe_name.replace(' ', '_')}_{url_hash}{extension}"


class ImageCache:
    """Downloads element images into a folder, skipping files already on disk."""

    def __init__(self, images_dir: Path, session: Optional[requests.Session] = None,
                 referer: str = ELEMENTS_PAGE_URL, download: bool = True):
        self.images_dir = Path(images_dir)
        self.images_dir.mkdir(parents=True, exist_ok=True)
        self.session = session if session is not None else build_session()
        self.referer = referer
        self.download = download
        self.last_request_time = 0.0
        self.downloaded = 0
        self.reused = 0
        self.failed = 0

    def _rate_limit(self):
        """Ensure we don't hammer the image CDN."""
        elapsed = time.time() - self.last_request_time
        if elapsed < RATE_LIMIT_DELAY:
            time.sleep(RATE_LIMIT_DELAY - elapsed)
        self.last_request_time = time.time()

    def _image_headers(self, image_url: str) -> Dict[str, str]:
        parsed = urlparse(image_url)
        origin = "https://static.wikia.nocookie.net"
        if parsed.scheme and parsed.netloc:
            origin = f"{parsed.scheme}://{parsed.netloc}"
        return {
            "Accept": "image/png,image/*,*/*;q=0.8",
            "Origin": origin,
            "Referer": self.referer,
            "Sec-Fetch-Dest": "image",
            "Sec-Fetch-Mode": "cors",
            "Sec-Fetch-Site": "cross-site",
        }

    def fetch(self, element_name: str, image_url: str) -> Optional[str]:
        """Return the local path for an element image, downloading it if needed.

        Returns None (and prints a warning) when the download fails.
        """
        local_path = self.images_dir / image_filename(element_name, image_url)
        try:
            # Anything smaller is a leftover from an interrupted download
            cached = local_path.exists() and local_path.stat().st_size >= MIN_IMAGE_BYTES
        except OSError as e:
            print(f"  Warning: Cannot cache image for {element_name}: {e}")
            self.failed += 1
            return None
        if cached:
            self.reused += 1
            return str(local_path)
        if not self.download:
            return None

        self._rate_limit()
        try:
            response = self.session.get(
                image_url, headers=self._image_headers(image_url), timeout=REQUEST_TIMEOUT
            )
            response.raise_for_status()
        except requests.RequestException as e:
            print(f"  Warning: Failed to download image for {element_name}: {e}")
            self.failed += 1
            return None

        content = response.content
        if len(content) < MIN_IMAGE_BYTES:
            print(f"  Warning: Image for {element_name} is too small ({len(content)} bytes), skipping")
            self.failed += 1
            return None

        try:
            self._write_atomic(local_path, content)
        except OSError as e:
            print(f"  Warning: Failed to save image for {element_name}: {e}")
            self.failed += 1
            return None
        self.downloaded += 1
        return str(local_path)

    def _write_atomic(self, local_path: Path, content: bytes):
        """Write to a temp file next to local_path, then move it into place."""
        fd, tmp_name = tempfile.mkstemp(dir=self.images_dir, suffix=".part")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(content)
            os.replace(tmp_name, local_path)
        except OSError:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
            raise

    def attach_images(self, elements: Dict[str, Element]):
        """Fill in local_image for every element that has an image URL."""
        print(f"Caching element images in {self.images_dir}...")
        for name in sorted(elements):
            element = elements[name]
            if element.image_url:
                element.local_image = self.fetch(element.name, element.image_url)
        print(f"  Downloaded {self.downloaded}, reused {self.reused}, failed {self.failed}")


def element_to_dict(element: Element) -> dict:
    entry = {
        "name": element.name,
        "tier": element.tier,
        "recipes": [{"ingredients": list(recipe.ingredients)} for recipe in element.recipes],
    }
    if element.image_url:
        entry["image"] = element.image_url
    if element.local_image:
        entry["localImage"] = element.local_image
    return entry


def generate_output_json(elements: Dict[str, Element], output_path: str = DEFAULT_OUTPUT) -> List[dict]:
    """Write the element array to output_path, ordered by tier then name."""
    print(f"\nGenerating output JSON: {output_path}")

    ordered = sorted(elements.values(), key=lambda element: (element.tier, element.name))
    output = [element_to_dict(element) for element in ordered]

    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(output, f, ensure_ascii=False, indent=2)

    tier_counts: Dict[int, int] = {}
    for element in ordered:
        tier_counts[element.tier] = tier_counts.get(element.tier, 0) + 1

    print(f"  Written {len(output)} elements")
    print(f"  Highest tier: {max(tier_counts) if tier_counts else 0}")
    for tier in sorted(tier_counts):
        print(f"    Tier {tier}: {tier_counts[tier]} elements")

    if output:
        print("\nSample element format:")
        print(json.dumps(output[0], ensure_ascii=False, indent=2))

    return output


def get_recipe_tree(
    elements: Dict[str, Element],
    element_name: str,
    indent: int = 0,
    visited: Optional[Set[str]] = None,
) -> List[str]:
    """
    Get a visual representation of how an element is made.

    Only the recipe that set the element's tier is expanded (the first one
    whose ingredients are all one tier below it). Elements already shown on
    the current path are not expanded again.
    """
    if visited is None:
        visited = set()

    element = elements.get(element_name)
    prefix = "│  " * (indent - 1) + "├─ " if indent > 0 else ""
    if element is None:
        return [f"{prefix}{element_name} [UNKNOWN]"]

    lines = [f"{prefix}{element.name} (Tier {element.tier})"]
    if element.name in visited or not element.recipes:
        return lines
    visited = visited | {element.name}

    recipe = _tier_setting_recipe(elements, element)
    if recipe is None:
        return lines
    for ingredient in recipe.ingredients:
        lines.extend(get_recipe_tree(elements, ingredient, indent + 1, visited))
    return lines


def _tier_setting_recipe(elements: Dict[str, Element], element: Element) -> Optional[Recipe]:
    for recipe in element.recipes:
        if not all(ingredient in elements for ingredient in recipe.ingredients):
            continue
        if max((elements[ingredient].tier for ingredient in recipe.ingredients), default=0) + 1 == element.tier:
            return recipe
    return None


def visualize_element(elements: Dict[str, Element], element_name: str, diagnostics: List[TierDiagnostic]):
    """Print an element's recipes and the recipe tree that set its tier."""
    key = next((name for name in elements if name.casefold() == normalize_name(element_name).casefold()), None)

    print(f"\n{'='*60}")
    print(f"Recipe Tree for: {element_name}")
    print(f"{'='*60}")

    if key is None:
        print(f"  Element not found: {element_name}")
        return

    element = elements[key]
    print(f"\n[Recipes - {len(element.recipes)} found]")
    print(f"{'-'*40}")
    for idx, recipe in enumerate(element.recipes):
        print(f"  Recipe {idx + 1}: {' + '.join(recipe.ingredients)}")

    print(f"\n[Tier]")
    print(f"{'-'*40}")
    print(f"  Tier {element.tier}")
    for diagnostic in diagnostics:
        if diagnostic.name == key:
            print(f"  FALLBACK - {diagnostic.reason}")

    print(f"\n[Recipe Tree]")
    print(f"{'-'*40}")
    for line in get_recipe_tree(elements, key):
        print(line)
    print()


def report_diagnostics(diagnostics: List[TierDiagnostic]):
    for diagnostic in diagnostics:
        detail = ""
        if diagnostic.missing:
            detail = f" (unknown: {', '.join(diagnostic.missing)})"
        elif diagnostic.blocked_by:
            detail = f" (waiting on: {', '.join(diagnostic.blocked_by)})"
        print(f"  Warning: Element {diagnostic.name} has {diagnostic.reason}{detail}, setting to Tier 1")


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(description="Little Alchemy 2 Element Tier Builder")
    parser.add_argument("--visualize", type=str, help="Visualize the recipe tree for a specific element")
    parser.add_argument("--output", type=str, default=DEFAULT_OUTPUT, help="Output JSON file path")
    parser.add_argument("--images-dir", type=str, default=DEFAULT_IMAGES_DIR, help="Directory for cached images")
    parser.add_argument("--cache-dir", type=str, default=str(CACHE_DIR), help="Directory for the cached wiki page")
    parser.add_argument("--page-url", type=str, default=ELEMENTS_PAGE_URL, help="Wiki page with the element table")
    parser.add_argument("--max-iterations", type=int, default=MAX_TIER_ITERATIONS,
                        help="Iteration cap for tier calculation")
    parser.add_argument("--refresh-cache", action="store_true", help="Force refresh of the cached wiki page")
    parser.add_argument("--skip-images", action="store_true", help="Do not download missing images")
    args = parser.parse_args(argv)

    print("Starting Little Alchemy 2 tier builder...")

    # Initialize cache and client
    session = build_session()
    cache_manager = CacheManager(Path(args.cache_dir))
    wiki_client = WikiPageClient(cache_manager, session=session, page_url=args.page_url)

    # Fetch and parse (uses cache unless --refresh-cache)
    html = wiki_client.fetch_elements_page(force_refresh=args.refresh_cache)
    print("Parsing element table...")
    elements = ElementPageParser().parse(html)

    print("Calculating element tiers...")
    resolution = resolve_tiers(elements, max_iterations=args.max_iterations)
    print(f"  Finished after {resolution.iterations} iteration(s)")
    if not resolution.converged:
        print(f"  Warning: Iteration cap of {args.max_iterations} reached before tiers settled")
    report_diagnostics(resolution.diagnostics)

    if args.visualize:
        visualize_element(resolution.elements, args.visualize, resolution.diagnostics)
        return

    image_cache = ImageCache(
        Path(args.images_dir), session=session, referer=args.page_url, download=not args.skip_images
    )
    image_cache.attach_images(resolution.elements)

    generate_output_json(resolution.elements, args.output)
    print(f"Downloaded images are saved in the '{args.images_dir}' directory")


if __name__ == "__main__":
    main()
