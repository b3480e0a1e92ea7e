from __future__ import annotations

import pytest

from school_api.errors import ValidationError
from school_api.utils import statuses


def test_payments_policy_maps_external_to_stored_values():
    policy = statuses.PAYMENTS

    assert policy.coerce("completed") == "success"
    assert policy.coerce("REJECTED") == "failed"
    assert policy.coerce("pending") == "pending"
    assert policy.to_external("success") == "completed"
    assert policy.to_external("failed") == "rejected"


def test_payments_policy_rejects_stored_vocabulary_from_clients():
    with pytest.raises(ValidationError) as excinfo:
        statuses.PAYMENTS.coerce("success")

    assert excinfo.value.status_code == 400
    assert excinfo.value.detail["allowed"] == ["pending", "completed", "rejected"]


def test_course_policy_accepts_synonyms_and_stores_canonical_values():
    policy = statuses.COURSE_PAYMENTS

    assert policy.coerce("success") == "completed"
    assert policy.coerce("failed") == "rejected"
    assert policy.coerce("completed") == "completed"
    # Legacy rows read back in the canonical vocabulary.
    assert policy.to_external("success") == "completed"


def test_modal_policy_is_identity():
    policy = statuses.PAYMENT_MODAL

    for value in ("pending", "approved", "rejected", "refunded"):
        assert policy.coerce(value) == value
        assert policy.to_external(value) == value

    with pytest.raises(ValidationError):
        policy.coerce("completed")


@pytest.mark.parametrize("value", [None, "", "  "])
def test_missing_status_is_rejected(value):
    with pytest.raises(ValidationError):
        statuses.PAYMENTS.coerce(value)


def test_external_values_collapse_duplicates():
    assert statuses.PAYMENTS.external_values() == ("pending", "completed", "rejected")
    assert statuses.COURSE_PAYMENTS.external_values() == ("pending", "completed", "rejected")
    assert statuses.PAYMENT_MODAL.external_values() == statuses.PAYMENT_MODAL.allowed
