import pytest

from assetdesk.inventory import ProductLine


def test_parse_many_accepts_positive_quantities():
    lines = ProductLine.parse_many([{"product_name": " Toner ", "quantity": "2.5"}, {"product_name": "Óleo", "quantity": 1}])
    assert lines == [ProductLine("Toner", 2.5), ProductLine("Óleo", 1.0)]
    assert ProductLine.parse_many(None) == []


@pytest.mark.parametrize(
    "quantity",
    [0, -1, float("nan"), float("inf"), "NaN", "-inf", None, "muito"],
)
def test_parse_many_rejects_bad_quantities(quantity):
    with pytest.raises(ValueError):
        ProductLine.parse_many([{"product_name": "Toner", "quantity": quantity}])


def test_parse_many_requires_a_list_of_named_products():
    with pytest.raises(ValueError):
        ProductLine.parse_many({"product_name": "Toner", "quantity": 1})
    with pytest.raises(ValueError):
        ProductLine.parse_many([{"quantity": 1}])
