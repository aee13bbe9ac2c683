#!/usr/bin/env python3
import sys
import json
import time
import logging
import argparse
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import requests
import yaml

from cds_errors import CdsError, UpstreamFetchFailed
from utils_bulletin import DownloadableItem, directory_of, parse_bulletin
from utils_catalog import CatalogEntry, VersionSelection, build_version_index, parse_catalog, sort_entries
from utils_gzip import gunzip_xml

BASE_XML_URL = "https://softwareupdate-prod.broadcom.com/cds/vmw-desktop/"
PRODUCTS_FILE = "products.yaml"
# next to the module in a checkout / editable install, under <prefix>/share when installed
PRODUCTS_PATH = next(
    (p for p in (Path(__file__).resolve().parent / PRODUCTS_FILE,
                 Path(sys.prefix) / "share" / "vmw-links" / PRODUCTS_FILE) if p.exists()),
    Path(__file__).resolve().parent / PRODUCTS_FILE,
)
BULLETIN_FILE = "metadata.xml.gz"

HEADERS = {
    "Accept": "*/*",
    "User-Agent": "Mozilla/5.0 (vmw-links; +https://github.com/) PythonRequests",
}

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Family:
    name: str
    bulletins: Tuple[str, ...] = ("core",)
    macos: bool = False


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    xml_file: str
    family: Family
    arch: Optional[str] = None


@dataclass
class Resolution:
    items: List[DownloadableItem] = field(default_factory=list)
    # secondary bulletins that failed and were left out
    skipped: List[Tuple[str, CdsError]] = field(default_factory=list)


def load_products(yaml_path=PRODUCTS_PATH) -> Dict[str, Product]:
    try:
        data = yaml.safe_load(Path(yaml_path).read_text(encoding="utf-8")) or {}
    except OSError as e:
        raise ValueError(f"Cannot read products file {yaml_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid products file {yaml_path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Invalid products file {yaml_path}: expected a mapping")

    families = {}
    for name, f in (data.get("families") or {}).items():
        f = f or {}
        families[name] = Family(
            name=name,
            bulletins=tuple(f.get("bulletins") or ["core"]),
            macos=bool(f.get("macos", False)),
        )

    products = {}
    for p in data.get("products") or []:
        pid, xml_file = p.get("id"), p.get("xml_file")
        if not pid or not xml_file:
            raise ValueError(f"product entry needs 'id' and 'xml_file': {p!r}")
        family = families.get(p.get("family"))
        if family is None:
            raise ValueError(f"product {pid} names unknown family {p.get('family')!r}")
        products[pid] = Product(id=pid, name=p.get("name", pid), xml_file=xml_file,
                                family=family, arch=p.get("arch"))
    return products


def get_product(product_id: str, products: Optional[Dict[str, Product]] = None) -> Product:
    products = products if products is not None else load_products()
    try:
        return products[product_id]
    except KeyError:
        raise ValueError(f"Selected product configuration not found: {product_id}") from None


def call_cds(path: str, retries: int = 3, backoff: float = 2.0, timeout: float = 30) -> requests.Response:
    url = BASE_XML_URL + path.lstrip("/")
    status, reason = None, ""
    for attempt in range(1, retries + 1):
        try:
            resp = requests.get(url, headers=HEADERS, timeout=timeout)
        except requests.RequestException as e:
            status, reason = None, str(e)
            logger.warning(f"GET {url} failed: {e} (attempt {attempt}/{retries})")
        else:
            logger.debug(f"GET {resp.url} -> {resp.status_code} {resp.reason}")
            if 200 <= resp.status_code < 300:
                return resp
            status, reason = resp.status_code, resp.reason or ""
            if resp.status_code < 500:
                break
            logger.warning(f"Unexpected status {resp.status_code} for {url} (attempt {attempt}/{retries})")
        if attempt < retries:
            time.sleep(backoff * attempt)
    raise UpstreamFetchFailed(path, status=status, reason=reason)


def fetch_bytes(path: str) -> bytes:
    return call_cds(path).content


def fetch_text(path: str) -> str:
    # catalogs are UTF-8 XML; requests falls back to ISO-8859-1 for text/* without a charset
    return call_cds(path).content.decode("utf-8", errors="replace")


def list_versions(product_id: str, products=None, fetch: Callable[[str], str] = fetch_text) -> List[CatalogEntry]:
    """Every downloadable catalog entry of a product, newest first."""
    product = get_product(product_id, products)
    xml_text = fetch(product.xml_file)
    entries = parse_catalog(xml_text, macos=product.family.macos, arch=product.arch)
    if not entries:
        logger.info(f"No valid (non 'info-only') metadata entries found for {product.name} in {product.xml_file}.")
    return sort_entries(entries)


def version_index(product_id: str, products=None, fetch: Callable[[str], str] = fetch_text) -> List[VersionSelection]:
    return build_version_index(list_versions(product_id, products=products, fetch=fetch))


def default_bulletin_path(product: Product, version: str, build: str, platform_or_arch: str) -> str:
    parts = [product.family.name, version, build]
    if not product.family.macos:
        parts.append(platform_or_arch)
    return "/".join(parts + [product.family.bulletins[0], BULLETIN_FILE])


def plan_bulletins(product: Product, bulletin_path: str) -> List[Tuple[str, bool]]:
    """
    Ordered (path, critical) pairs to fetch for one release.

    The selected bulletin always comes first and is critical. For families
    publishing several bulletins, selecting the first one (core) also pulls
    its siblings (packages), which are optional.
    """
    plan = [(bulletin_path, True)]
    bulletins = product.family.bulletins
    parts = bulletin_path.split("/")
    if len(bulletins) > 1 and len(parts) >= 2 and parts[-2] == bulletins[0]:
        for other in bulletins[1:]:
            plan.append(("/".join(parts[:-2] + [other, parts[-1]]), False))
    return plan


def resolve_downloads(product_id: str, version: str, build: str, platform_or_arch: str,
                      bulletin_path: Optional[str] = None, products=None,
                      fetch: Callable[[str], bytes] = fetch_bytes) -> Resolution:
    product = get_product(product_id, products)
    if not bulletin_path:
        bulletin_path = default_bulletin_path(product, version, build, platform_or_arch)
    elif f"/{version}/{build}/" not in f"/{bulletin_path}":
        logger.warning(f"{bulletin_path} does not look like {version} build {build}")

    result = Resolution()
    for path, critical in plan_bulletins(product, bulletin_path):
        directory = directory_of(path)
        try:
            items = parse_bulletin(gunzip_xml(fetch(path), path=path), directory)
        except CdsError as e:
            if critical:
                raise
            if isinstance(e, UpstreamFetchFailed) and e.not_found:
                logger.info(f"{path} is not published for {version} build {build}; skipping")
            else:
                logger.warning(f"Skipping {path}: {e}")
            result.skipped.append((path, e))
            continue
        logger.debug(f"{len(items)} item(s) from {path}")
        result.items.extend(items)

    if not result.items:
        logger.info(f"No downloadable items found in {bulletin_path}.")
    return result


def _find_entry(entries: List[CatalogEntry], version, build, platform_or_arch) -> Optional[CatalogEntry]:
    matches = [e for e in entries
               if (e.version, e.build, e.platform_or_arch) == (version, build, platform_or_arch)]
    return matches[0] if matches else None


def cmd_products(args, products):
    for p in products.values():
        print(f"{p.id:<18} {p.name}")
    return 0


def cmd_versions(args, products):
    if args.all:
        rows = list_versions(args.product, products=products)
    else:
        rows = version_index(args.product, products=products)
    if not rows:
        print(f"No versions found for {args.product}.", file=sys.stderr)
    for r in rows:
        print(f"{r.display_label:<50} {r.canonical_path}")
    return 0


def cmd_resolve(args, products):
    path = args.path
    if not path:
        entry = _find_entry(list_versions(args.product, products=products),
                            args.version, args.build, args.platform)
        path = entry.canonical_path if entry else None
    result = resolve_downloads(args.product, args.version, args.build, args.platform,
                               bulletin_path=path, products=products)
    for skipped_path, err in result.skipped:
        logger.warning(f"{skipped_path} left out: {err}")
    print(json.dumps([i.to_dict(BASE_XML_URL) for i in result.items], indent=2, ensure_ascii=False))
    if not result.items:
        print("No downloadable items found for this version.", file=sys.stderr)
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(prog="vmw-links",
                                     description="Download links for VMware desktop products from the Broadcom CDS")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    parser.add_argument("--products-file", type=Path, default=PRODUCTS_PATH)
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("products", help="list configured products").set_defaults(func=cmd_products)

    p = sub.add_parser("versions", help="list published versions of a product")
    p.add_argument("product")
    p.add_argument("--all", action="store_true", help="every catalog entry, including packages bulletins")
    p.set_defaults(func=cmd_versions)

    p = sub.add_parser("resolve", help="list downloadable files of one release")
    p.add_argument("product")
    p.add_argument("version")
    p.add_argument("build")
    p.add_argument("platform")
    p.add_argument("--path", help="bulletin path as listed by 'versions'")
    p.set_defaults(func=cmd_resolve)

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="[%(levelname)s] %(message)s")

    try:
        products = load_products(args.products_file)
        return args.func(args, products)
    except (CdsError, ValueError) as e:
        print(f"[error] {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
