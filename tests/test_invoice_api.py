"""
Invoice preview / generate / lifecycle over the HTTP API.

Every scenario bills January 2024 unless stated otherwise.
"""
from decimal import Decimal

import pytest


PERIOD = {"periodStart": "2024-01-01", "periodEnd": "2024-01-31"}


def amount(value) -> Decimal:
    return Decimal(str(value))


@pytest.fixture
async def fixed_fee_project(create_project, create_rule, create_master):
    """Project billed a flat Warehouse Fee of 5000 from its master template."""
    project = await create_project()
    await create_rule(
        project["id"],
        ruleName="Monthly Fee",
        ruleType="FIXED",
        unitBasis="Month",
        priceSource="fixed_price",
        config={},
    )
    await create_master(project["id"], [{"itemName": "Warehouse Fee", "unitPrice": "5000", "isFixed": True}])
    return project


@pytest.fixture
async def ea_project(create_project, create_rule, create_price_list, create_delivery):
    """Project billing part A1 at 2.50 per unit from a price list."""
    project = await create_project()
    price_list = await create_price_list("PL-EA", [{"itemKey": "A1", "unitPrice": "2.50"}], project["id"])
    await create_rule(
        project["id"],
        ruleName="Per unit",
        ruleType="EA",
        unitBasis="EA",
        priceSource="price_list",
        groupingKey="part_no",
        config={"priceListId": price_list["id"]},
    )
    await create_delivery(project["id"], "2024-01-05", partNo="A1", partName="Bracket", quantity="10")
    await create_delivery(project["id"], "2024-01-20", partNo="A1", partName="Bracket", quantity="15")
    return project


async def generate(client, project, **extra):
    return await client.post("/api/v1/invoices/generate", json={"projectId": project["id"], **PERIOD, **extra})


async def preview(client, project, **period):
    return await client.post("/api/v1/invoices/preview", json={"projectId": project["id"], **(period or PERIOD)})


# ============================================================================
# PREVIEW / GENERATE
# ============================================================================

async def test_fixed_master_template_invoice(client, fixed_fee_project):
    response = await preview(client, fixed_fee_project)
    assert response.status_code == 200
    body = response.json()
    assert [line["description"] for line in body["invoiceLines"]] == ["Warehouse Fee"]
    assert amount(body["invoiceLines"][0]["amount"]) == Decimal("5000")
    assert amount(body["summary"]["totalAmount"]) == Decimal("5500")

    response = await generate(client, fixed_fee_project)
    assert response.status_code == 201, response.text
    invoice = response.json()
    assert invoice["status"] == "draft"
    assert invoice["invoiceNumber"] == f"INV-{fixed_fee_project['code']}-00001"
    assert invoice["periodMonth"] == "2024-01"
    assert invoice["dueDate"] == "2024-03-01"
    assert invoice["generatedFrom"] == "auto"
    assert amount(invoice["subtotal"]) == Decimal("5000")
    assert amount(invoice["tax"]) == Decimal("500")
    assert amount(invoice["totalAmount"]) == Decimal("5500")
    assert [(item["lineNumber"], item["description"]) for item in invoice["lineItems"]] == [(1, "Warehouse Fee")]


async def test_ea_price_list_invoice(client, ea_project):
    response = await generate(client, ea_project)
    assert response.status_code == 201, response.text
    lines = response.json()["lineItems"]

    assert len(lines) == 1
    assert lines[0]["description"] == "Bracket - A1"
    assert lines[0]["groupingValue"] == "A1"
    assert amount(lines[0]["quantity"]) == Decimal("25")
    assert amount(lines[0]["unitPrice"]) == Decimal("2.50")
    assert amount(lines[0]["amount"]) == Decimal("62.50")
    assert len(lines[0]["sourceIds"]) == 2


async def test_higher_priority_rule_wins(client, create_project, create_rule, create_delivery):
    project = await create_project()
    await create_rule(project["id"], ruleName="standard", priority=5, config={"unitPrice": "1.00"})
    await create_rule(project["id"], ruleName="premium", priority=10, config={"unitPrice": "3.00"})
    await create_delivery(project["id"], "2024-01-10", partNo="A1", quantity="10")

    body = (await preview(client, project)).json()

    assert [(line["ruleName"], amount(line["amount"])) for line in body["invoiceLines"]] == [
        ("premium", Decimal("30.00"))
    ]
    assert [rule["ruleName"] for rule in body["activeRules"]] == ["premium", "standard"]
    assert any("standard" in warning for warning in body["warnings"])


async def test_labor_hours_are_not_double_counted(client, create_project, create_rule, create_labor_log):
    project = await create_project()
    overtime = await create_rule(
        project["id"], ruleName="overtime", ruleType="LABOR", unitBasis="Hour",
        priceSource="labor_rate", priority=10, config={"fallbackRate": "25.00"},
    )
    await create_rule(
        project["id"], ruleName="regular", ruleType="LABOR", unitBasis="Hour",
        priceSource="labor_rate", priority=5, config={"fallbackRate": "20.00"},
    )
    await create_labor_log(project["id"], "2024-01-08", hours="3")
    await create_labor_log(project["id"], "2024-01-09", hours="4.5")

    response = await generate(client, project)
    assert response.status_code == 201, response.text
    lines = response.json()["lineItems"]

    assert [line["ruleId"] for line in lines] == [overtime["id"]]
    assert amount(lines[0]["quantity"]) == Decimal("7.5")
    assert amount(lines[0]["amount"]) == Decimal("187.50")


async def test_second_generate_for_same_period_conflicts(client, fixed_fee_project):
    assert (await generate(client, fixed_fee_project)).status_code == 201

    response = await generate(client, fixed_fee_project)
    assert response.status_code == 409
    assert response.json()["type"] == "DuplicatePeriod"

    overlapping = await client.post(
        "/api/v1/invoices/generate",
        json={"projectId": fixed_fee_project["id"], "periodStart": "2024-01-15", "periodEnd": "2024-02-14"},
    )
    assert overlapping.status_code == 409


async def test_period_end_is_inclusive(client, create_project, create_rule, create_delivery):
    project = await create_project()
    await create_rule(project["id"], config={"unitPrice": "1"})
    await create_delivery(project["id"], "2023-12-31", partNo="A1", quantity="1")
    await create_delivery(project["id"], "2024-01-01", partNo="A1", quantity="2")
    await create_delivery(project["id"], "2024-01-31", partNo="A1", quantity="4")
    await create_delivery(project["id"], "2024-02-01", partNo="A1", quantity="8")

    body = (await preview(client, project)).json()

    assert amount(body["invoiceLines"][0]["quantity"]) == Decimal("6")
    assert body["performanceData"]["deliveryCount"] == 2


async def test_preview_is_idempotent_and_writes_nothing(client, ea_project):
    first = await preview(client, ea_project)
    second = await preview(client, ea_project)
    assert first.status_code == second.status_code == 200
    assert first.json() == second.json()

    unbilled = await client.get(
        "/api/v1/deliveries", params={"projectId": ea_project["id"], "unbilledOnly": "true"}
    )
    assert len(unbilled.json()) == 2
    invoices = await client.get("/api/v1/invoices", params={"projectId": ea_project["id"]})
    assert invoices.json() == []


async def test_subtotal_equals_sum_of_lines(client, create_project, create_rule, create_delivery, create_labor_log):
    project = await create_project(taxRate="0.0725")
    await create_rule(project["id"], groupingKey="part_no", config={"unitPrice": "0.77"})
    await create_rule(
        project["id"], ruleName="Labor", ruleType="LABOR", unitBasis="Hour",
        priceSource="labor_rate", groupingKey="work_type", config={"fallbackRate": "19.99"},
    )
    for i in range(5):
        await create_delivery(project["id"], f"2024-01-{10 + i}", partNo=f"P{i % 2}", quantity="1.333")
    await create_labor_log(project["id"], "2024-01-11", hours="2.5", laborRate="21.10")
    await create_labor_log(project["id"], "2024-01-12", workType="Packing", hours="1.25")

    invoice = (await generate(client, project)).json()

    lines_total = sum(amount(line["amount"]) for line in invoice["lineItems"])
    assert amount(invoice["subtotal"]) == lines_total
    assert amount(invoice["totalAmount"]) == amount(invoice["subtotal"]) + amount(invoice["tax"])
    assert [line["lineNumber"] for line in invoice["lineItems"]] == list(range(1, len(invoice["lineItems"]) + 1))


async def test_generate_marks_records_billed(client, ea_project):
    invoice = (await generate(client, ea_project)).json()

    unbilled = await client.get(
        "/api/v1/deliveries", params={"projectId": ea_project["id"], "unbilledOnly": "true"}
    )
    assert unbilled.json() == []
    deliveries = (await client.get("/api/v1/deliveries", params={"projectId": ea_project["id"]})).json()
    assert {d["invoiceId"] for d in deliveries} == {invoice["id"]}


async def test_explicit_items_replace_master_template(client, fixed_fee_project):
    response = await generate(
        client, fixed_fee_project,
        items=[{"itemName": "Special Handling", "quantity": "3", "unit": "EA", "unitPrice": "40"}],
        notes="Agreed with customer",
    )
    assert response.status_code == 201, response.text
    invoice = response.json()
    assert invoice["generatedFrom"] == "manual"
    assert invoice["notes"] == "Agreed with customer"
    assert [(line["description"], amount(line["amount"])) for line in invoice["lineItems"]] == [
        ("Special Handling", Decimal("120.00"))
    ]


# ============================================================================
# ERRORS
# ============================================================================

async def test_no_applicable_rule(client, create_project):
    project = await create_project()

    body = (await preview(client, project)).json()
    assert body["invoiceLines"] == []
    assert body["warnings"]

    response = await generate(client, project)
    assert response.status_code == 400
    error = response.json()
    assert error["type"] == "NoApplicableRule"
    assert error["path"] == "/api/v1/invoices/generate"
    assert error["method"] == "POST"


async def test_unresolved_price(client, create_project, create_rule, create_price_list, create_delivery):
    project = await create_project()
    price_list = await create_price_list("PL-MISS", [{"itemKey": "A1", "unitPrice": "2.50"}])
    await create_rule(
        project["id"], priceSource="price_list", groupingKey="part_no",
        config={"priceListId": price_list["id"]},
    )
    await create_delivery(project["id"], "2024-01-10", partNo="ZZ9", quantity="1")

    body = (await preview(client, project)).json()
    assert body["invoiceLines"][0]["error"].startswith("PriceNotFound")
    assert amount(body["invoiceLines"][0]["amount"]) == Decimal("0")

    response = await generate(client, project)
    assert response.status_code == 400
    assert response.json()["type"] == "PriceNotFound"


async def test_unknown_project(client):
    response = await client.post(
        "/api/v1/invoices/preview",
        json={"projectId": "00000000-0000-0000-0000-000000000000", **PERIOD},
    )
    assert response.status_code == 404
    assert response.json()["type"] == "ProjectNotFound"


async def test_invalid_period_is_rejected(client, fixed_fee_project):
    response = await client.post(
        "/api/v1/invoices/preview",
        json={"projectId": fixed_fee_project["id"], "periodStart": "2024-02-01", "periodEnd": "2024-01-01"},
    )
    assert response.status_code == 400
    assert response.json()["type"] == "ValidationError"


# ============================================================================
# LIFECYCLE
# ============================================================================

async def test_status_transitions(client, fixed_fee_project):
    invoice = (await generate(client, fixed_fee_project)).json()
    url = f"/api/v1/invoices/{invoice['id']}"

    response = await client.patch(f"{url}/send")
    assert response.status_code == 409
    assert response.json()["type"] == "InvalidStatusTransition"

    assert (await client.patch(f"{url}/approve")).json()["status"] == "approved"
    sent = (await client.patch(f"{url}/send")).json()
    assert sent["status"] == "sent"
    # due 2024-03-01 has passed
    assert sent["displayStatus"] == "overdue"

    overdue = await client.get("/api/v1/invoices", params={"status": "overdue"})
    assert [row["id"] for row in overdue.json()] == [invoice["id"]]

    paid = (await client.patch(f"{url}/pay", json={"paidDate": "2024-03-05"})).json()
    assert paid["status"] == "paid"
    assert paid["paidDate"] == "2024-03-05"

    assert (await client.patch(f"{url}/cancel")).status_code == 409
    assert (await client.patch(f"{url}/approve")).status_code == 409


async def test_cancel_releases_period_and_records(client, ea_project):
    first = (await generate(client, ea_project)).json()

    cancelled = await client.patch(
        f"/api/v1/invoices/{first['id']}/cancel", json={"reason": "Wrong quantities"}
    )
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"
    assert cancelled.json()["cancelReason"] == "Wrong quantities"

    unbilled = await client.get(
        "/api/v1/deliveries", params={"projectId": ea_project["id"], "unbilledOnly": "true"}
    )
    assert len(unbilled.json()) == 2

    second = await generate(client, ea_project)
    assert second.status_code == 201, second.text
    assert second.json()["invoiceNumber"].endswith("-00002")
    assert amount(second.json()["totalAmount"]) == amount(first["totalAmount"])


async def test_get_unknown_invoice(client):
    response = await client.get("/api/v1/invoices/00000000-0000-0000-0000-000000000000")
    assert response.status_code == 404
    assert response.json()["type"] == "InvoiceNotFound"
