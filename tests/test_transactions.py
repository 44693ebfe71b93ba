import pytest

from acid_demo.errors import (
    ConstraintViolationError,
    InvalidRequestError,
    NotFoundError,
    SimulatedFailureError,
)
from acid_demo.schemas import AddressCreate, UserCreate
from acid_demo.transactions import AFTER_ALL_WRITES, TransactionService


def make_user(name="John Doe", email="john@example.com"):
    return UserCreate(name=name, email=email)


def make_address(zip_code="10001", street="1 Main St", city="New York", state="NY"):
    return AddressCreate(
        street=street, city=city, state=state, zip_code=zip_code, country="USA"
    )


def test_create_user_with_addresses_commits_everything(service):
    created = service.create_user_with_addresses(
        make_user(),
        [make_address("10001"), make_address("90001", city="Los Angeles", state="CA")],
    )
    assert created.user.id is not None
    assert created.user.created_at is not None
    assert [a.user_id for a in created.addresses] == [created.user.id] * 2

    loaded = service.get_user_with_addresses(created.user.id)
    assert loaded.email == "john@example.com"
    assert [a.zip_code for a in loaded.addresses] == ["10001", "90001"]
    assert service.count_rows() == (1, 2)


def test_forced_failure_without_addresses_rolls_back(service):
    service.create_user_with_addresses(make_user(), [make_address()])
    before = service.count_rows()

    with pytest.raises(SimulatedFailureError) as exc_info:
        service.create_user_with_addresses(
            make_user("Bob Smith", "bob@example.com"), [], force_failure=True
        )

    assert "rollback" in exc_info.value.message
    assert service.count_rows() == before


def test_forced_failure_with_addresses_commits_under_default_policy(service):
    created = service.create_user_with_addresses(
        make_user(), [make_address()], force_failure=True
    )
    assert service.get_user_with_addresses(created.user.id) is not None


def test_forced_failure_after_all_writes_policy_rolls_back(session_factory):
    service = TransactionService(
        session_factory, failure_delay=0, failure_policy=AFTER_ALL_WRITES
    )
    with pytest.raises(SimulatedFailureError):
        service.create_user_with_addresses(
            make_user(), [make_address(), make_address("90001")], force_failure=True
        )
    assert service.count_rows() == (0, 0)


def test_unknown_failure_policy_is_rejected(session_factory):
    with pytest.raises(ValueError):
        TransactionService(session_factory, failure_policy="sometimes")


def test_duplicate_email_is_a_constraint_violation(service):
    service.create_user_with_addresses(make_user(), [make_address()])

    with pytest.raises(ConstraintViolationError) as exc_info:
        service.create_user_with_addresses(
            make_user("Other Name", "john@example.com"), [make_address("90001")]
        )

    assert exc_info.value.kind == "constraint_violation"
    assert service.count_rows() == (1, 1)


def test_mapping_input_is_accepted(service):
    created = service.create_user_with_addresses(
        {"name": "Jane Doe", "email": "jane@example.com"},
        [
            {
                "street": "2 Side St",
                "city": "Boston",
                "state": "MA",
                "zip_code": "02101",
                "country": "USA",
            }
        ],
    )
    assert created.addresses[0].city == "Boston"


@pytest.mark.parametrize(
    "user, addresses",
    [
        ("john@example.com", []),
        ({"name": "John"}, []),
        (make_user(), None),
        (make_user(), [{"street": "only street"}]),
        (make_user(), ["10001"]),
    ],
)
def test_malformed_input_is_rejected_before_any_write(service, user, addresses):
    with pytest.raises(InvalidRequestError):
        service.create_user_with_addresses(user, addresses)
    assert service.count_rows() == (0, 0)


def test_delete_user_removes_addresses(service):
    created = service.create_user_with_addresses(
        make_user(), [make_address(), make_address("90001"), make_address("60601")]
    )

    assert service.delete_user(created.user.id) is True
    assert service.get_user_with_addresses(created.user.id) is None
    assert service.count_rows() == (0, 0)


def test_delete_missing_user_is_not_found(service):
    with pytest.raises(NotFoundError):
        service.delete_user(12345)


def test_delete_leaves_other_users_untouched(service):
    first = service.create_user_with_addresses(make_user(), [make_address()])
    second = service.create_user_with_addresses(
        make_user("Jane Roe", "jane@example.com"), [make_address("90001")]
    )

    service.delete_user(first.user.id)

    remaining = service.list_users_with_addresses()
    assert [u.id for u in remaining] == [second.user.id]
    assert len(remaining[0].addresses) == 1


def test_get_user_is_idempotent(service):
    created = service.create_user_with_addresses(
        make_user(), [make_address(), make_address("90001")]
    )

    def snapshot():
        user = service.get_user_with_addresses(created.user.id)
        return (
            user.id,
            user.name,
            user.email,
            [(a.id, a.street, a.zip_code) for a in user.addresses],
        )

    assert snapshot() == snapshot()


def test_validated_workflow_rejects_without_writing(service):
    outcome = service.run_validated_workflow(
        make_user("AB", "invalid-email"), [make_address("123")]
    )

    assert outcome.success is False
    assert outcome.violations == [
        "Email must contain @ symbol",
        "Name must be at least 3 characters",
        "Invalid zip code format: 123",
    ]
    assert outcome.created is None
    assert service.count_rows() == (0, 0)


def test_validated_workflow_creates_when_rules_pass(service):
    outcome = service.run_validated_workflow(
        make_user("Valid User Name", "valid@example.com"), [make_address("12345")]
    )

    assert outcome.success is True
    assert outcome.violations is None
    assert outcome.created.user.email == "valid@example.com"
    assert service.count_rows() == (1, 1)


def test_validated_workflow_propagates_constraint_violations(service):
    service.run_validated_workflow(make_user(), [make_address()])

    with pytest.raises(ConstraintViolationError):
        service.run_validated_workflow(make_user("Another", "john@example.com"), [make_address()])
    assert service.count_rows() == (1, 1)


def test_end_to_end_scenario(service):
    created = service.create_user_with_addresses(
        make_user("John Doe", "john@example.com"),
        [make_address("10001"), make_address("90001")],
    )
    assert len(service.get_user_with_addresses(created.user.id).addresses) == 2
    before = service.count_rows()

    with pytest.raises(SimulatedFailureError):
        service.create_user_with_addresses(
            make_user("Bob Smith", "bob@example.com"), [], force_failure=True
        )

    assert service.count_rows() == before
