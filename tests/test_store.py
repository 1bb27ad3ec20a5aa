"""
Tests for the record store
==========================

- customer codes and validation
- case creation, folder paths and customer links
- set-replace of case customers
- tasks
- case <-> decision links
"""

import pytest

from tech_office_cms.database import CaseCustomer, CaseDiavgeiaLink
from tech_office_cms.decision_cache import DecisionCache
from tech_office_cms.errors import ConflictError, NotFoundError, ValidationError
from tech_office_cms.store import RecordStore

from conftest import make_decision


@pytest.fixture
def store(session, clock):
    return RecordStore(session, base_dir="cases", clock=clock)


@pytest.fixture
def customer(store):
    return store.create_customer({"name": "Acme Ltd", "email": "office@acme.test"})


# =============================================================================
# Customers
# =============================================================================

class TestCustomers:

    def test_first_customer_gets_code_1(self, store):
        customer = store.create_customer({"name": "First"})

        assert customer.customer_code == "1"
        assert customer.status == "Active"

    def test_code_follows_highest_numeric_code(self, store):
        """A manually assigned code ahead of the id sequence wins"""
        store.create_customer({"name": "Manual", "customer_code": "41"})

        customer = store.create_customer({"name": "Auto"})

        assert customer.customer_code == "42"

    def test_explicit_code_is_kept(self, store):
        customer = store.create_customer({"name": "Coded", "customer_code": "  C-7 "})

        assert customer.customer_code == "C-7"

    def test_name_is_required(self, store):
        with pytest.raises(ValidationError):
            store.create_customer({"email": "x@y.z"})

    def test_unknown_status_is_rejected(self, store):
        with pytest.raises(ValidationError):
            store.create_customer({"name": "Odd", "status": "Gone"})

    def test_duplicate_code_is_a_conflict(self, store):
        store.create_customer({"name": "One", "customer_code": "100"})

        with pytest.raises(ConflictError):
            store.create_customer({"name": "Two", "customer_code": "100"})

    def test_update_requires_code_and_name(self, store, customer):
        with pytest.raises(ValidationError):
            store.update_customer(customer.id, {"name": "No code"})

    def test_update_changes_fields_and_timestamp(self, store, customer):
        before = customer.updated_at

        updated = store.update_customer(customer.id, {
            "customer_code": customer.customer_code, "name": "Acme Limited", "status": "Lead"
        })

        assert updated.name == "Acme Limited"
        assert updated.status == "Lead"
        assert updated.updated_at > before

    def test_update_unknown_customer(self, store):
        with pytest.raises(NotFoundError):
            store.update_customer(999, {"customer_code": "1", "name": "x"})

    def test_list_filters_case_insensitively(self, store):
        store.create_customer({"name": "Alpha Shipping"})
        store.create_customer({"name": "Beta", "contact_person": "Maria ALPHA"})
        store.create_customer({"name": "Gamma"})

        names = {c.name for c in store.list_customers("alpha")}

        assert names == {"Alpha Shipping", "Beta"}

    def test_list_orders_by_updated_at_descending(self, store):
        store.create_customer({"name": "Older"})
        store.create_customer({"name": "Newer"})

        assert [c.name for c in store.list_customers()] == ["Newer", "Older"]


# =============================================================================
# Cases
# =============================================================================

class TestCases:

    def test_required_fields(self, store):
        with pytest.raises(ValidationError) as exc:
            store.create_case({"case_number": "C-1"})

        assert "client_name" in exc.value.message

    def test_folder_path_is_sanitized(self, store):
        case = store.create_case({"case_number": "C/100", "client_name": 'Acme:  "Ltd"'})

        assert case.storage_folder_path == "cases\\C100 - Acme Ltd"
        assert case.status == "Open"

    def test_name_match_creates_single_link(self, store, session, customer):
        """Creating a case for an existing customer name links that customer"""
        store.create_customer({"name": "Acme Ltd"})

        case = store.create_case({"case_number": "C-100", "client_name": "Acme Ltd"})

        links = session.query(CaseCustomer).filter_by(case_id=case.id).all()
        assert len(links) == 1
        assert links[0].customer_id == customer.id

    def test_no_match_creates_no_link(self, store, session):
        case = store.create_case({"case_number": "C-101", "client_name": "Nobody"})

        assert session.query(CaseCustomer).filter_by(case_id=case.id).count() == 0

    def test_explicit_customer_ids_win(self, store, customer):
        other = store.create_customer({"name": "Other"})

        case = store.create_case({"case_number": "C-102", "client_name": "Acme Ltd",
                                  "customer_ids": [other.id]})

        assert [c.id for c in store.case_customers(case.id)] == [other.id]

    def test_create_with_unknown_customer_writes_nothing(self, store, session, customer):
        with pytest.raises(NotFoundError):
            store.create_case({"case_number": "C-103", "client_name": "Acme Ltd", "customer_ids": [999]})

        assert store.list_cases() == []
        assert session.query(CaseCustomer).count() == 0

    def test_create_with_non_numeric_customer_id_does_not_name_match(self, store, session, customer):
        with pytest.raises(ValidationError):
            store.create_case({"case_number": "C-104", "client_name": "Acme Ltd", "customer_ids": ["x"]})

        assert session.query(CaseCustomer).count() == 0

    def test_create_with_empty_list_falls_back_to_name_match(self, store, customer):
        case = store.create_case({"case_number": "C-105", "client_name": "Acme Ltd", "customer_ids": []})

        assert [c.id for c in store.case_customers(case.id)] == [customer.id]

    def test_update_with_unknown_customer_keeps_case_and_links(self, store, session, customer):
        case = store.create_case({"case_number": "C-106", "client_name": "Acme Ltd"})

        with pytest.raises(NotFoundError):
            store.update_case(case.id, {"case_number": "C-106", "client_name": "Renamed",
                                        "customer_ids": [4242]})

        session.expire_all()
        links = session.query(CaseCustomer).filter_by(case_id=case.id).all()
        assert [link.customer_id for link in links] == [customer.id]
        assert store.get_case(case.id).client_name == "Acme Ltd"

    def test_duplicate_case_number_is_a_conflict(self, store):
        store.create_case({"case_number": "C-1", "client_name": "A"})

        with pytest.raises(ConflictError):
            store.create_case({"case_number": "C-1", "client_name": "B"})

    def test_update_recomputes_folder_and_keeps_links(self, store, customer):
        case = store.create_case({"case_number": "C-5", "client_name": "Acme Ltd"})

        updated = store.update_case(case.id, {"case_number": "C-5", "client_name": "Acme Holdings",
                                              "status": "Completed"})

        assert updated.storage_folder_path == "cases\\C-5 - Acme Holdings"
        assert updated.status == "Completed"
        assert [c.id for c in store.case_customers(case.id)] == [customer.id]

    def test_list_search_and_status(self, store):
        store.create_case({"case_number": "X-1", "client_name": "Delta", "reference_number": "REF-9"})
        store.create_case({"case_number": "X-2", "client_name": "Echo", "status": "Completed"})

        assert [c.case_number for c in store.list_cases("ref-9")] == ["X-1"]
        assert [c.case_number for c in store.list_cases(status="Completed")] == ["X-2"]

    def test_active_case_count_excludes_completed(self, store):
        store.create_case({"case_number": "A-1", "client_name": "A"})
        store.create_case({"case_number": "A-2", "client_name": "B", "status": "Completed"})

        assert store.count_active_cases() == 1


# =============================================================================
# Case customers
# =============================================================================

class TestCaseCustomerLinks:

    def test_set_replace(self, store, session):
        """Writing [2, 5] then [5] leaves exactly the link to customer 5"""
        for i in range(5):
            store.create_customer({"name": f"Customer {i + 1}"})
        case = store.create_case({"case_number": "L-1", "client_name": "Nobody"})

        store.set_case_customers(case.id, [2, 5])
        store.set_case_customers(case.id, [5])

        links = session.query(CaseCustomer).filter_by(case_id=case.id).all()
        assert [(link.case_id, link.customer_id) for link in links] == [(case.id, 5)]

    def test_unknown_customer_leaves_links_untouched(self, store, customer):
        case = store.create_case({"case_number": "L-2", "client_name": "Acme Ltd"})

        with pytest.raises(NotFoundError):
            store.set_case_customers(case.id, [customer.id, 404])

        assert [c.id for c in store.case_customers(case.id)] == [customer.id]

    def test_empty_list_clears_links(self, store, customer):
        case = store.create_case({"case_number": "L-3", "client_name": "Acme Ltd"})

        assert store.set_case_customers(case.id, []) == []

    def test_resolution_falls_back_to_name_match(self, store, session, customer):
        case = store.create_case({"case_number": "L-4", "client_name": "Acme Ltd"})
        store.set_case_customers(case.id, [])

        customers, source = store.resolve_case_customers(case)

        assert [c.id for c in customers] == [customer.id]
        assert source == "name_match"

    def test_customer_cases_prefers_links(self, store, customer):
        linked = store.create_case({"case_number": "L-5", "client_name": "Someone else",
                                    "customer_ids": [customer.id]})
        other = store.create_customer({"name": "Other"})
        store.create_case({"case_number": "L-6", "client_name": "Acme Ltd", "customer_ids": [other.id]})

        cases, source = store.customer_cases(customer)

        assert [c.id for c in cases] == [linked.id]
        assert source == "linked"


# =============================================================================
# Tasks
# =============================================================================

class TestTasks:

    def test_create_and_order_by_start(self, store):
        store.create_task({"title": "Later", "start_time": "2024-05-02T09:00:00Z",
                           "end_time": "2024-05-02T10:00:00Z"})
        store.create_task({"title": "Sooner", "start_time": "2024-05-01T09:00:00Z",
                           "end_time": "2024-05-01T10:00:00Z"})

        assert [t.title for t in store.list_tasks()] == ["Sooner", "Later"]

    def test_required_fields(self, store):
        with pytest.raises(ValidationError):
            store.create_task({"title": "No times"})

    def test_end_before_start_is_rejected(self, store):
        with pytest.raises(ValidationError):
            store.create_task({"title": "Backwards", "start_time": "2024-05-02T10:00:00Z",
                               "end_time": "2024-05-02T09:00:00Z"})

    def test_unknown_case_is_rejected(self, store):
        with pytest.raises(NotFoundError):
            store.create_task({"title": "Orphan", "start_time": "2024-05-01T09:00:00Z",
                               "end_time": "2024-05-01T10:00:00Z", "case_id": 77})

    def test_filter_by_case(self, store):
        case = store.create_case({"case_number": "T-1", "client_name": "A"})
        store.create_task({"title": "Hearing", "start_time": "2024-05-01T09:00:00Z",
                           "end_time": "2024-05-01T10:00:00Z"}, case_id=case.id)
        store.create_task({"title": "Lunch", "start_time": "2024-05-01T12:00:00Z",
                           "end_time": "2024-05-01T13:00:00Z"})

        assert [t.title for t in store.list_tasks(case_id=case.id)] == ["Hearing"]
        assert [t.title for t in store.list_tasks(q="lun")] == ["Lunch"]

    def test_update(self, store):
        task = store.create_task({"title": "Draft", "start_time": "2024-05-01T09:00:00Z",
                                  "end_time": "2024-05-01T10:00:00Z"})

        updated = store.update_task(task.id, {"title": "Final", "start_time": "2024-05-01T09:00:00Z",
                                              "end_time": "2024-05-01T11:00:00Z", "notes": "moved"})

        assert updated.title == "Final"
        assert updated.notes == "moved"


# =============================================================================
# Case <-> decision links
# =============================================================================

class TestDecisionLinks:

    @pytest.fixture
    def case(self, store):
        return store.create_case({"case_number": "D-1", "client_name": "A"})

    @pytest.fixture
    def cached(self, session, registry):
        return DecisionCache(session, registry).upsert(make_decision("LINK-1"))

    def test_decision_must_be_cached(self, store, case):
        with pytest.raises(ValidationError) as exc:
            store.link_decision(case.id, "NOT-CACHED")

        assert exc.value.message == "Decision must be fetched/cached before linking"

    def test_link_and_list(self, store, case, cached):
        link = store.link_decision(case.id, "LINK-1", "relevant")

        links = store.list_decision_links(case.id)
        assert [item.id for item in links] == [link.id]
        assert links[0].to_dict()["decision"]["ada"] == "LINK-1"

    def test_duplicate_link_is_a_conflict(self, store, case, cached):
        store.link_decision(case.id, "LINK-1")

        with pytest.raises(ConflictError):
            store.link_decision(case.id, "LINK-1")

    def test_unlink_checks_case(self, store, session, case, cached):
        other = store.create_case({"case_number": "D-2", "client_name": "B"})
        link = store.link_decision(case.id, "LINK-1")

        with pytest.raises(NotFoundError):
            store.unlink_decision(other.id, link.id)

        store.unlink_decision(case.id, link.id)
        assert session.query(CaseDiavgeiaLink).count() == 0
