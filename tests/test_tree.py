import json

import pytest

from stocksync.export.projection import ALL_LOCATIONS, NO_LOCATION, project_rows
from stocksync.export.tree import build_tree, classify
from stocksync.models import EntityKind

MAIN = "gid://shopify/Location/1"
AUCKLAND = "gid://shopify/Location/2"

PRODUCT = {"id": "gid://shopify/Product/1", "title": "Oak Side Table"}
VARIANT = {
    "id": "gid://shopify/ProductVariant/11",
    "sku": "OAK-TBL-S",
    "selectedOptions": [{"name": "Size", "value": "Small"}, {"name": "Finish", "value": "Natural"}],
    "inventoryItem": {"id": "gid://shopify/InventoryItem/21"},
    "__parentId": "gid://shopify/Product/1",
}
LEVEL_MAIN = {
    "id": "gid://shopify/InventoryLevel/31?inventory_item_id=21",
    "location": {"id": MAIN, "name": "Main Warehouse"},
    "quantities": [{"quantity": 5}],
    "__parentId": "gid://shopify/InventoryItem/21",
}
LEVEL_AUCKLAND = {
    "id": "gid://shopify/InventoryLevel/32?inventory_item_id=21",
    "location": {"id": AUCKLAND, "name": "Auckland Store"},
    "quantities": [{"quantity": 2}],
    "__parentId": "gid://shopify/ProductVariant/11",
}


def lines(*records) -> list[str]:
    return [json.dumps(record) for record in records]


@pytest.mark.parametrize(
    ("record", "expected"),
    [
        ({"id": "gid://shopify/Product/1"}, EntityKind.PRODUCT),
        ({"id": "gid://shopify/ProductVariant/1"}, EntityKind.VARIANT),
        ({"id": "gid://shopify/InventoryItem/1"}, EntityKind.INVENTORY_ITEM),
        ({"id": "gid://shopify/InventoryLevel/1?inventory_item_id=2"}, EntityKind.INVENTORY_LEVEL),
        ({"id": "legacy-ProductVariant-9"}, EntityKind.VARIANT),
        ({"location": {"id": MAIN}, "quantities": []}, EntityKind.INVENTORY_LEVEL),
        ({"id": "gid://shopify/Collection/1"}, EntityKind.UNKNOWN),
        ({"title": "no id"}, EntityKind.UNKNOWN),
    ],
)
def test_classify(record, expected) -> None:
    assert classify(record) == expected


def test_builds_nested_tree() -> None:
    result = build_tree(lines(PRODUCT, VARIANT, LEVEL_MAIN))

    assert result.dropped == 0
    assert [product.id for product in result.products] == ["gid://shopify/Product/1"]
    variant = result.products[0].children_of(EntityKind.VARIANT)[0]
    item = variant.children_of(EntityKind.INVENTORY_ITEM)[0]
    assert item.id == "gid://shopify/InventoryItem/21"
    assert [level.id for level in item.children_of(EntityKind.INVENTORY_LEVEL)] == [LEVEL_MAIN["id"]]


def test_children_before_parents_still_attach() -> None:
    result = build_tree(lines(LEVEL_MAIN, VARIANT, PRODUCT))

    assert result.dropped == 0
    rows = project_rows(result.products)
    assert [(row.sku, row.location, row.quantity) for row in rows] == [("OAK-TBL-S", "Main Warehouse", 5)]


def test_level_parented_by_variant_hangs_under_its_item() -> None:
    result = build_tree(lines(PRODUCT, VARIANT, LEVEL_AUCKLAND))

    variant = result.products[0].children_of(EntityKind.VARIANT)[0]
    item = variant.children_of(EntityKind.INVENTORY_ITEM)[0]
    assert variant.children_of(EntityKind.INVENTORY_LEVEL) == []
    assert [level.id for level in item.children_of(EntityKind.INVENTORY_LEVEL)] == [LEVEL_AUCKLAND["id"]]


def test_orphans_unknown_and_malformed_lines_are_counted() -> None:
    orphan = dict(LEVEL_MAIN, __parentId="gid://shopify/InventoryItem/999")
    source = lines(PRODUCT, VARIANT, orphan, {"id": "gid://shopify/Collection/7"})
    source.insert(1, "{not json")
    source.append("")
    source.append("[1, 2]")

    result = build_tree(source)

    assert result.dropped == 1
    assert result.unknown == 1
    assert [error.line_number for error in result.parse_errors] == [2, 7]
    assert len(result.products) == 1


def test_variant_without_product_is_dropped() -> None:
    result = build_tree(lines(VARIANT, LEVEL_MAIN))

    assert result.products == []
    assert result.dropped == 1


def test_projection_row_per_level_with_options() -> None:
    result = build_tree(lines(PRODUCT, VARIANT, LEVEL_MAIN, LEVEL_AUCKLAND))

    records = [row.to_record() for row in project_rows(result.products, ALL_LOCATIONS)]

    assert records == [
        {
            "Product Title": "Oak Side Table",
            "SKU": "OAK-TBL-S",
            "Option1 Value": "Small",
            "Option2 Value": "Natural",
            "Option3 Value": "",
            "Inventory Location": "Main Warehouse",
            "Quantity Available": 5,
        },
        {
            "Product Title": "Oak Side Table",
            "SKU": "OAK-TBL-S",
            "Option1 Value": "Small",
            "Option2 Value": "Natural",
            "Option3 Value": "",
            "Inventory Location": "Auckland Store",
            "Quantity Available": 2,
        },
    ]


def test_projection_placeholder_only_without_filter() -> None:
    result = build_tree(lines(PRODUCT, VARIANT))

    unfiltered = project_rows(result.products)
    filtered = project_rows(result.products, MAIN)

    assert [(row.sku, row.location, row.quantity) for row in unfiltered] == [("OAK-TBL-S", NO_LOCATION, 0)]
    assert filtered == []


def test_projection_filter_keeps_matching_levels() -> None:
    result = build_tree(lines(PRODUCT, VARIANT, LEVEL_MAIN, LEVEL_AUCKLAND))

    rows = project_rows(result.products, AUCKLAND)

    assert [(row.location, row.quantity) for row in rows] == [("Auckland Store", 2)]


def test_projection_defaults_missing_quantity_to_zero() -> None:
    level = dict(LEVEL_MAIN, quantities=[])
    result = build_tree(lines(PRODUCT, VARIANT, level))

    assert [row.quantity for row in project_rows(result.products)] == [0]


def test_standalone_item_line_merges_into_nested_item() -> None:
    item = {"id": "gid://shopify/InventoryItem/21", "tracked": True, "__parentId": VARIANT["id"]}

    result = build_tree(lines(PRODUCT, VARIANT, item, LEVEL_MAIN))

    variant = result.products[0].children_of(EntityKind.VARIANT)[0]
    items = variant.children_of(EntityKind.INVENTORY_ITEM)
    assert len(items) == 1
    assert items[0].data["tracked"] is True
    assert result.dropped == 0
    assert [(row.location, row.quantity) for row in project_rows(result.products)] == [("Main Warehouse", 5)]


def test_item_line_before_its_variant_keeps_early_levels() -> None:
    item = {"id": "gid://shopify/InventoryItem/21", "__parentId": VARIANT["id"]}

    result = build_tree(lines(item, LEVEL_MAIN, PRODUCT, VARIANT))

    variant = result.products[0].children_of(EntityKind.VARIANT)[0]
    assert len(variant.children_of(EntityKind.INVENTORY_ITEM)) == 1
    assert result.dropped == 0
    assert [(row.location, row.quantity) for row in project_rows(result.products)] == [("Main Warehouse", 5)]
