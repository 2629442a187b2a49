"""
Unit tests for checkout payload scrubbing and log masking
"""
from utils.security_utils import mask_email, scrub_card_fields


def test_scrub_card_fields_drops_card_data():
    payload = {
        "planId": 1,
        "amount": 9.99,
        "cardholderName": "Ada Traveller",
        "email": "ada@example.com",
        "cardNumber": "4242 4242 4242 4242",
        "expiryDate": "12/30",
        "cvv": "123",
        "terms": True,
    }

    scrubbed = scrub_card_fields(payload)

    assert scrubbed == {
        "planId": 1,
        "amount": 9.99,
        "cardholderName": "Ada Traveller",
        "email": "ada@example.com",
    }
    # Original is left alone
    assert payload["cvv"] == "123"


def test_mask_email():
    assert mask_email("traveller@example.com") == "t***@example.com"
    assert mask_email("not-an-email") == "***"
    assert mask_email("") == "***"
