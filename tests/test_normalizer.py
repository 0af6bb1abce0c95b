from normalizer import CanonicalRecord, normalize_data, normalize_field_names, safe_bool


def test_normalize_field_names_copies_aliases_without_mutating_input():
    rows = [
        {"id": "INV-1", "invoiceDate": "01/01/2024", "type": "ACCREC"},
        {"id": "INV-2", "invoiceDate": "02/01/2024", "type": "ACCREC"},
    ]

    normalised = normalize_field_names(rows)

    assert [row["transaction_number"] for row in normalised] == ["INV-1", "INV-2"]
    assert [row["issue_date"] for row in normalised] == ["01/01/2024", "02/01/2024"]
    assert normalised[0]["transaction_type"] == "ACCREC"
    assert "transaction_number" not in rows[0]
    assert len(normalised) == len(rows)


def test_normalize_field_names_inspects_first_row_only():
    rows = [{"transaction_number": "A"}, {"id": "B"}]

    normalised = normalize_field_names(rows)

    assert "transaction_number" not in normalised[1]


def test_normalize_field_names_empty():
    assert normalize_field_names([]) == []


def test_normalize_data_builds_canonical_records():
    rows = [
        {
            "transactionNumber": 1001.0,
            "type": "ACCREC",
            "amount": "$1,500.00",
            "date": "/Date(1704067200000+0000)/",
            "dueDate": "31/01/2024",
            "status": "PAID",
            "reference": "PO-9",
            "payment_date": "15/01/2024",
        },
        {"transactionNumber": "1002", "amount": 20, "is_voided": "yes"},
    ]

    records = normalize_data(rows, "DD/MM/YYYY")

    first, second = records
    assert isinstance(first, CanonicalRecord)
    assert first.index == 0
    assert first.transaction_number == "1001"
    assert first.amount == 1500.0
    assert first.date == "2024-01-01"
    assert first.due_date == "2024-01-31"
    assert first.payment_date == "2024-01-15"
    assert first.is_paid is True
    assert first.original_amount == 1500.0
    assert first.amount_paid == 0.0

    assert second.index == 1
    assert second.is_voided is True
    assert second.is_paid is False
    assert second.date is None


def test_normalize_data_partial_payment_fields():
    rows = [
        {
            "transaction_number": "INV-7",
            "amount": "600",
            "original_amount": "1000",
            "amount_paid": "400",
            "is_partially_paid": True,
        }
    ]

    record = normalize_data(rows)[0]

    assert record.is_partially_paid is True
    assert record.original_amount == 1000.0
    assert record.amount_paid == 400.0


def test_as_dict_uses_wire_keys():
    record = normalize_data([{"transactionNumber": "X", "dueDate": "2024-03-01"}])[0]
    payload = record.as_dict()
    assert payload["transactionNumber"] == "X"
    assert payload["dueDate"] == "2024-03-01"
    assert "index" not in payload


def test_safe_bool():
    assert safe_bool("TRUE") is True
    assert safe_bool("sim") is True
    assert safe_bool("0") is False
    assert safe_bool(None) is False
    assert safe_bool(1) is True
