from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, timezone
import json

db = SQLAlchemy()

CUSTOMER_STATUSES = ('Active', 'Lead', 'Inactive')


def utcnow():
    """Naive UTC timestamp, the form SQLite DateTime columns round-trip"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value else None


def _load_blob(value, empty):
    if not value:
        return empty
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return empty


class Customer(db.Model):
    """
    Office customer, addressed by a human-facing customer code
    """
    __tablename__ = 'customers'

    id = db.Column(db.Integer, primary_key=True)
    customer_code = db.Column(db.String(50), nullable=False, unique=True)
    name = db.Column(db.String(200), nullable=False)

    contact_person = db.Column(db.String(200), default='')
    email = db.Column(db.String(200), default='')
    phone = db.Column(db.String(50), default='')
    status = db.Column(db.String(20), default='Active')
    segment = db.Column(db.String(100), default='')
    owner = db.Column(db.String(100), default='')
    notes = db.Column(db.Text, default='')

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        """Convert model to dictionary for JSON serialization"""
        return {
            'id': self.id,
            'customer_code': self.customer_code,
            'name': self.name,
            'contact_person': self.contact_person,
            'email': self.email,
            'phone': self.phone,
            'status': self.status,
            'segment': self.segment,
            'owner': self.owner,
            'notes': self.notes,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at)
        }


class Case(db.Model):
    """
    Office case. ``client_name`` is free text, customers are attached through
    ``case_customers``.
    """
    __tablename__ = 'cases'

    id = db.Column(db.Integer, primary_key=True)
    case_number = db.Column(db.String(100), nullable=False, unique=True)
    client_name = db.Column(db.String(200), nullable=False)

    reference_number = db.Column(db.String(100), default='')
    case_date = db.Column(db.String(50), default='')
    notes = db.Column(db.Text, default='')
    status = db.Column(db.String(50), default='Open')
    due_date = db.Column(db.String(50), default='')
    storage_folder_path = db.Column(db.String(400), default='')

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'case_number': self.case_number,
            'client_name': self.client_name,
            'reference_number': self.reference_number,
            'case_date': self.case_date,
            'notes': self.notes,
            'status': self.status,
            'due_date': self.due_date,
            'storage_folder_path': self.storage_folder_path,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at)
        }


class Task(db.Model):
    """
    Calendar task, optionally associated with a case
    """
    __tablename__ = 'tasks'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    start_time = db.Column(db.String(50), nullable=False)
    end_time = db.Column(db.String(50), nullable=False)
    notes = db.Column(db.Text, default='')
    case_id = db.Column(db.Integer, db.ForeignKey('cases.id'), nullable=True, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'start_time': self.start_time,
            'end_time': self.end_time,
            'notes': self.notes,
            'case_id': self.case_id,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at)
        }


class CaseCustomer(db.Model):
    """
    Many-to-many link between cases and customers
    """
    __tablename__ = 'case_customers'

    case_id = db.Column(db.Integer, db.ForeignKey('cases.id'), primary_key=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), primary_key=True, index=True)


class DiavgeiaDecision(db.Model):
    """
    Local copy of a decision published on Diavgeia. The remote registry is
    authoritative; rows here are refreshed on demand.
    """
    __tablename__ = 'diavgeia_decisions'

    id = db.Column(db.Integer, primary_key=True)
    ada = db.Column(db.String(50), nullable=False, unique=True, index=True)

    subject = db.Column(db.Text, default='')
    protocol_number = db.Column(db.String(200), default='')
    decision_type_id = db.Column(db.String(50), default='')
    organization_id = db.Column(db.String(50), default='', index=True)
    organization_label = db.Column(db.String(300), default='')
    issue_date = db.Column(db.String(50), default='', index=True)
    document_url = db.Column(db.Text, default='')
    status = db.Column(db.String(50), default='')
    submitter_uid = db.Column(db.String(50), default='')
    unit_uid = db.Column(db.String(200), default='')

    # JSON encoded
    thematic_category_ids = db.Column(db.Text, nullable=False, default='[]')
    attachments = db.Column(db.Text, nullable=False, default='[]')
    extra_field_values = db.Column(db.Text, nullable=False, default='{}')
    private_data = db.Column(db.Text, nullable=False, default='{}')

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    last_fetched_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'ada': self.ada,
            'subject': self.subject,
            'protocol_number': self.protocol_number,
            'decision_type_id': self.decision_type_id,
            'organization_id': self.organization_id,
            'organization_label': self.organization_label,
            'issue_date': self.issue_date,
            'document_url': self.document_url,
            'status': self.status,
            'submitter_uid': self.submitter_uid,
            'unit_uid': self.unit_uid,
            'thematic_category_ids': _load_blob(self.thematic_category_ids, []),
            'attachments': _load_blob(self.attachments, []),
            'extra_field_values': _load_blob(self.extra_field_values, {}),
            'private_data': _load_blob(self.private_data, {}),
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
            'last_fetched_at': _iso(self.last_fetched_at)
        }


class CaseDiavgeiaLink(db.Model):
    """
    Link between a case and a cached decision, with free-text notes
    """
    __tablename__ = 'case_diavgeia_links'
    __table_args__ = (
        db.UniqueConstraint('case_id', 'decision_ada', name='uq_case_decision'),
    )

    id = db.Column(db.Integer, primary_key=True)
    case_id = db.Column(db.Integer, db.ForeignKey('cases.id', ondelete='CASCADE'), nullable=False, index=True)
    decision_ada = db.Column(db.String(50), db.ForeignKey('diavgeia_decisions.ada', ondelete='CASCADE'),
                             nullable=False, index=True)
    notes = db.Column(db.Text, default='')
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    decision = db.relationship('DiavgeiaDecision', lazy='joined')

    def to_dict(self):
        return {
            'id': self.id,
            'case_id': self.case_id,
            'decision_ada': self.decision_ada,
            'notes': self.notes,
            'created_at': _iso(self.created_at),
            'decision': self.decision.to_dict() if self.decision else None
        }
