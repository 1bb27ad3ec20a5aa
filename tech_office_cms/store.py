"""
Record store: CRUD accessors for customers, cases, tasks and their links.

The store wraps a SQLAlchemy session handed in by the caller. Unique
constraint violations are rolled back and reported as ConflictError.
"""
import logging
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import Integer, cast, func, or_
from sqlalchemy.exc import IntegrityError

from .database import (
    CUSTOMER_STATUSES, Case, CaseCustomer, CaseDiavgeiaLink, Customer,
    DiavgeiaDecision, Task, utcnow,
)
from .errors import ConflictError, NotFoundError, ValidationError
from .utils import default_case_folder, join_share_path, require_fields, validate_task_input

logger = logging.getLogger(__name__)

CUSTOMER_SEARCH_COLUMNS = (Customer.customer_code, Customer.name, Customer.contact_person, Customer.email)
CASE_SEARCH_COLUMNS = (Case.case_number, Case.client_name, Case.reference_number)
TASK_SEARCH_COLUMNS = (Task.title, Task.notes)


def _text(value) -> str:
    return str(value).strip() if value is not None else ''


def _substring_filter(columns: Iterable, q: str):
    like = f"%{q}%"
    return or_(*[column.ilike(like) for column in columns])


def _customer_ids(values) -> List[int]:
    if not isinstance(values, list):
        raise ValidationError("customer_ids must be a list")
    ids = []
    for value in values:
        try:
            customer_id = int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid customer id: {value}") from None
        if customer_id not in ids:
            ids.append(customer_id)
    return ids


class RecordStore:
    """
    Args:
        session: SQLAlchemy session (``db.session`` inside the app)
        base_dir: share folder the case folders are created under
        clock: callable returning the current naive UTC datetime
    """

    def __init__(self, session, base_dir: str = 'cases', clock: Callable = utcnow):
        self.session = session
        self.base_dir = base_dir
        self.clock = clock

    def _commit(self):
        try:
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            logger.warning(f"Integrity error: {str(e.orig)}")
            raise ConflictError(str(e.orig)) from e

    # ---------- customers ----------

    def next_customer_code(self) -> str:
        """
        Next unused numeric customer code.

        Takes the larger of "highest id + 1" and "highest numeric code + 1".
        Two concurrent creations may compute the same value; the unique
        constraint then rejects the second one.
        """
        max_id = self.session.query(func.max(Customer.id)).scalar() or 0
        max_code = self.session.query(func.max(cast(Customer.customer_code, Integer))).scalar() or 0
        return str(max(max_id + 1, max_code + 1))

    def get_customer(self, customer_id) -> Customer:
        customer = self.session.get(Customer, customer_id)
        if customer is None:
            raise NotFoundError("Not found")
        return customer

    def list_customers(self, q: str = '') -> List[Customer]:
        query = self.session.query(Customer)
        q = _text(q)
        if q:
            query = query.filter(_substring_filter(CUSTOMER_SEARCH_COLUMNS, q))
        return query.order_by(Customer.updated_at.desc(), Customer.id.desc()).all()

    def _customer_fields(self, data: Dict) -> Dict:
        status = _text(data.get('status')) or 'Active'
        if status not in CUSTOMER_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(CUSTOMER_STATUSES)}")
        return {
            'name': _text(data.get('name')),
            'contact_person': _text(data.get('contact_person')),
            'email': _text(data.get('email')),
            'phone': _text(data.get('phone')),
            'status': status,
            'segment': _text(data.get('segment')),
            'owner': _text(data.get('owner')),
            'notes': data.get('notes') or '',
        }

    def create_customer(self, data: Dict) -> Customer:
        is_valid, error_message = require_fields(data, 'name')
        if not is_valid:
            raise ValidationError(error_message)

        now = self.clock()
        customer = Customer(
            customer_code=_text(data.get('customer_code')) or self.next_customer_code(),
            created_at=now,
            updated_at=now,
            **self._customer_fields(data)
        )
        self.session.add(customer)
        self._commit()
        return customer

    def update_customer(self, customer_id, data: Dict) -> Customer:
        customer = self.get_customer(customer_id)

        is_valid, error_message = require_fields(data, 'customer_code', 'name')
        if not is_valid:
            raise ValidationError(error_message)

        customer.customer_code = _text(data.get('customer_code'))
        for column, value in self._customer_fields(data).items():
            setattr(customer, column, value)
        customer.updated_at = self.clock()
        self._commit()
        return customer

    def find_customers_by_name(self, name: str) -> List[Customer]:
        return self.session.query(Customer).filter(Customer.name == name).order_by(Customer.id).all()

    def customer_cases(self, customer: Customer) -> Tuple[List[Case], str]:
        """
        Cases of a customer: explicit links first, falling back to cases whose
        client_name equals the customer name when there are none.
        """
        linked = (
            self.session.query(Case)
            .join(CaseCustomer, CaseCustomer.case_id == Case.id)
            .filter(CaseCustomer.customer_id == customer.id)
            .order_by(Case.updated_at.desc())
            .all()
        )
        if linked:
            return linked, 'linked'
        if not customer.name:
            return [], 'linked'
        matched = (
            self.session.query(Case)
            .filter(Case.client_name == customer.name)
            .order_by(Case.updated_at.desc())
            .all()
        )
        return matched, 'name_match' if matched else 'linked'

    # ---------- cases ----------

    def case_folder_path(self, case_number: str, client_name: str) -> str:
        return join_share_path(self.base_dir, default_case_folder(case_number, client_name))

    def get_case(self, case_id) -> Case:
        case = self.session.get(Case, case_id)
        if case is None:
            raise NotFoundError("Not found")
        return case

    def list_cases(self, q: str = '', status: Optional[str] = None) -> List[Case]:
        query = self.session.query(Case)
        q = _text(q)
        if q:
            query = query.filter(_substring_filter(CASE_SEARCH_COLUMNS, q))
        if status:
            query = query.filter(Case.status == status)
        return query.order_by(Case.updated_at.desc(), Case.id.desc()).all()

    def _case_fields(self, data: Dict) -> Dict:
        is_valid, error_message = require_fields(data, 'case_number', 'client_name')
        if not is_valid:
            raise ValidationError(error_message)

        case_number = _text(data.get('case_number'))
        client_name = _text(data.get('client_name'))
        return {
            'case_number': case_number,
            'client_name': client_name,
            'reference_number': _text(data.get('reference_number')),
            'case_date': _text(data.get('case_date')),
            'notes': data.get('notes') or '',
            'due_date': _text(data.get('due_date')),
            'storage_folder_path': self.case_folder_path(case_number, client_name),
        }

    def create_case(self, data: Dict) -> Case:
        """
        Create a case and link its customers.

        With no ``customer_ids`` (or an empty list) the first customer whose
        name equals ``client_name`` is linked, if there is one. Unknown
        customer ids are rejected before anything is written.
        """
        fields = self._case_fields(data)
        customer_ids = self._known_customer_ids(data.get('customer_ids') or [])
        now = self.clock()
        case = Case(status=_text(data.get('status')) or 'Open', created_at=now, updated_at=now, **fields)
        self.session.add(case)
        try:
            self.session.flush()
        except IntegrityError as e:
            self.session.rollback()
            raise ConflictError(str(e.orig)) from e

        if not customer_ids:
            matches = self.find_customers_by_name(case.client_name)
            customer_ids = [matches[0].id] if matches else []
        self._replace_case_customers(case.id, customer_ids)

        self._commit()
        return case

    def update_case(self, case_id, data: Dict) -> Case:
        case = self.get_case(case_id)
        fields = self._case_fields(data)
        customer_ids = None
        if data.get('customer_ids') is not None:
            customer_ids = self._known_customer_ids(data['customer_ids'])

        for column, value in fields.items():
            setattr(case, column, value)
        if _text(data.get('status')):
            case.status = _text(data.get('status'))
        case.updated_at = self.clock()

        if customer_ids is not None:
            self._replace_case_customers(case.id, customer_ids)

        self._commit()
        return case

    def _known_customer_ids(self, values) -> List[int]:
        ids = _customer_ids(values)
        known = {row.id for row in self.session.query(Customer.id).filter(Customer.id.in_(ids))} if ids else set()
        unknown = [customer_id for customer_id in ids if customer_id not in known]
        if unknown:
            raise NotFoundError(f"Unknown customer id(s): {', '.join(str(i) for i in unknown)}")
        return ids

    def _replace_case_customers(self, case_id: int, customer_ids: List[int]):
        self.session.query(CaseCustomer).filter(CaseCustomer.case_id == case_id).delete(
            synchronize_session='fetch'
        )
        for customer_id in customer_ids:
            self.session.add(CaseCustomer(case_id=case_id, customer_id=customer_id))

    def set_case_customers(self, case_id, customer_ids) -> List[Customer]:
        """
        Replace the customer links of a case with ``customer_ids``.

        The delete and the inserts are committed together or not at all.
        """
        case = self.get_case(case_id)
        ids = self._known_customer_ids(customer_ids)

        try:
            self._replace_case_customers(case.id, ids)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return self.case_customers(case.id)

    def case_customers(self, case_id: int) -> List[Customer]:
        return (
            self.session.query(Customer)
            .join(CaseCustomer, CaseCustomer.customer_id == Customer.id)
            .filter(CaseCustomer.case_id == case_id)
            .order_by(Customer.name)
            .all()
        )

    def resolve_case_customers(self, case: Case) -> Tuple[List[Customer], str]:
        """
        Customers shown for a case: explicit links first, falling back to an
        exact match on client_name when the case has no links.
        """
        linked = self.case_customers(case.id)
        if linked:
            return linked, 'linked'
        if not case.client_name:
            return [], 'linked'
        matched = self.find_customers_by_name(case.client_name)
        return matched, 'name_match' if matched else 'linked'

    # ---------- tasks ----------

    def get_task(self, task_id) -> Task:
        task = self.session.get(Task, task_id)
        if task is None:
            raise NotFoundError("Not found")
        return task

    def list_tasks(self, q: str = '', case_id: Optional[int] = None) -> List[Task]:
        query = self.session.query(Task)
        q = _text(q)
        if q:
            query = query.filter(_substring_filter(TASK_SEARCH_COLUMNS, q))
        if case_id is not None:
            query = query.filter(Task.case_id == case_id)
        return query.order_by(Task.start_time.asc(), Task.id.asc()).all()

    def _task_fields(self, data: Dict) -> Dict:
        title = _text(data.get('title'))
        start_time = _text(data.get('start_time'))
        end_time = _text(data.get('end_time'))
        is_valid, error_message = validate_task_input(title, start_time, end_time)
        if not is_valid:
            raise ValidationError(error_message)
        return {
            'title': title,
            'start_time': start_time,
            'end_time': end_time,
            'notes': data.get('notes') or '',
        }

    def _task_case_id(self, value) -> Optional[int]:
        if value in (None, ''):
            return None
        try:
            case_id = int(value)
        except (TypeError, ValueError):
            raise ValidationError("case_id must be an integer")
        self.get_case(case_id)
        return case_id

    def create_task(self, data: Dict, case_id=None) -> Task:
        fields = self._task_fields(data)
        if case_id is None:
            case_id = self._task_case_id(data.get('case_id'))
        now = self.clock()
        task = Task(case_id=case_id, created_at=now, updated_at=now, **fields)
        self.session.add(task)
        self._commit()
        return task

    def update_task(self, task_id, data: Dict) -> Task:
        task = self.get_task(task_id)
        fields = self._task_fields(data)
        for column, value in fields.items():
            setattr(task, column, value)
        if 'case_id' in data:
            task.case_id = self._task_case_id(data.get('case_id'))
        task.updated_at = self.clock()
        self._commit()
        return task

    def case_tasks(self, case_id: int) -> List[Task]:
        return self.list_tasks(case_id=case_id)

    # ---------- case <-> decision links ----------

    def get_link(self, case_id, link_id) -> CaseDiavgeiaLink:
        link = (
            self.session.query(CaseDiavgeiaLink)
            .filter(CaseDiavgeiaLink.id == link_id, CaseDiavgeiaLink.case_id == case_id)
            .first()
        )
        if link is None:
            raise NotFoundError("Link not found")
        return link

    def list_decision_links(self, case_id: int) -> List[CaseDiavgeiaLink]:
        return (
            self.session.query(CaseDiavgeiaLink)
            .join(DiavgeiaDecision, DiavgeiaDecision.ada == CaseDiavgeiaLink.decision_ada)
            .filter(CaseDiavgeiaLink.case_id == case_id)
            .order_by(DiavgeiaDecision.issue_date.desc(), CaseDiavgeiaLink.id.desc())
            .all()
        )

    def link_decision(self, case_id, decision_ada: str, notes: str = '') -> CaseDiavgeiaLink:
        """
        Link a cached decision to a case. The decision has to be in the cache
        already; linking the same decision twice is a conflict.
        """
        case = self.get_case(case_id)
        decision_ada = _text(decision_ada)
        if not decision_ada:
            raise ValidationError("decision_ada is required")

        decision = self.session.query(DiavgeiaDecision).filter_by(ada=decision_ada).first()
        if decision is None:
            raise ValidationError("Decision must be fetched/cached before linking")

        existing = (
            self.session.query(CaseDiavgeiaLink)
            .filter_by(case_id=case.id, decision_ada=decision_ada)
            .first()
        )
        if existing is not None:
            raise ConflictError("This decision is already linked to this case")

        link = CaseDiavgeiaLink(case_id=case.id, decision_ada=decision_ada, notes=notes or '',
                                created_at=self.clock())
        self.session.add(link)
        self._commit()
        return link

    def unlink_decision(self, case_id, link_id):
        self.get_case(case_id)
        link = self.get_link(case_id, link_id)
        self.session.delete(link)
        self._commit()

    # ---------- dashboard ----------

    def count_customers(self) -> int:
        return self.session.query(func.count(Customer.id)).scalar()

    def count_active_cases(self) -> int:
        return self.session.query(func.count(Case.id)).filter(
            or_(Case.status.is_(None), Case.status != 'Completed')
        ).scalar()
