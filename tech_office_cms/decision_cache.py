"""
Read-through cache of Diavgeia decisions.

Callers get the locally stored copy unless they ask for a refresh; a miss or
a refresh goes to the registry and the answer is upserted before it is
returned. Entries never expire and are never evicted.
"""
import json
import logging
from datetime import timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy import func, or_

from .database import DiavgeiaDecision, CaseDiavgeiaLink, utcnow
from .errors import NotFoundError, ValidationError
from .utils import normalize_issue_date, inclusive_upper_bound, parse_page, parse_page_size

logger = logging.getLogger(__name__)

# column -> registry payload key
SCALAR_FIELDS = {
    'subject': 'subject',
    'protocol_number': 'protocolNumber',
    'decision_type_id': 'decisionTypeId',
    'organization_id': 'organizationId',
    'organization_label': 'organizationLabel',
    'document_url': 'documentUrl',
    'status': 'status',
    'submitter_uid': 'submitterUid',
}

BLOB_FIELDS = {
    'thematic_category_ids': ('thematicCategoryIds', list),
    'attachments': ('attachments', list),
    'extra_field_values': ('extraFieldValues', dict),
    'private_data': ('privateData', dict),
}


def _unit_uid(payload: Dict) -> str:
    if payload.get('unitUid'):
        return str(payload['unitUid'])
    unit_ids = payload.get('unitIds')
    if isinstance(unit_ids, list):
        return ','.join(str(unit) for unit in unit_ids)
    return ''


def decision_columns(payload: Dict) -> Dict:
    """Map a registry payload onto DiavgeiaDecision column values"""
    values = {column: str(payload.get(key) or '') for column, key in SCALAR_FIELDS.items()}
    values['issue_date'] = normalize_issue_date(payload.get('issueDate'))
    values['unit_uid'] = _unit_uid(payload)
    for column, (key, empty) in BLOB_FIELDS.items():
        blob = payload.get(key)
        values[column] = json.dumps(blob if blob is not None else empty(), ensure_ascii=False)
    return values


class SearchFilters:
    """Cache-mode search filters, each turned into a bound SQL predicate"""

    def __init__(self, q=None, subject=None, protocol=None, org=None, decision_type=None,
                 from_date=None, to_date=None, status=None):
        self.q = q
        self.subject = subject
        self.protocol = protocol
        self.org = org
        self.decision_type = decision_type
        self.from_date = from_date
        self.to_date = to_date
        self.status = status

    @classmethod
    def from_params(cls, params: Dict):
        keys = {
            'q': 'q', 'subject': 'subject', 'protocol': 'protocol', 'org': 'org',
            'type': 'decision_type', 'from_date': 'from_date', 'to_date': 'to_date', 'status': 'status',
        }
        return cls(**{name: (params.get(key) or '').strip() or None for key, name in keys.items()})

    def predicates(self) -> List:
        predicates = []
        if self.q:
            like = f"%{self.q}%"
            predicates.append(or_(
                DiavgeiaDecision.subject.ilike(like),
                DiavgeiaDecision.ada.ilike(like),
                DiavgeiaDecision.protocol_number.ilike(like),
            ))
        if self.subject:
            predicates.append(DiavgeiaDecision.subject.ilike(f"%{self.subject}%"))
        if self.protocol:
            predicates.append(DiavgeiaDecision.protocol_number.ilike(f"%{self.protocol}%"))
        if self.org:
            predicates.append(DiavgeiaDecision.organization_id.ilike(f"%{self.org}%"))
        if self.decision_type:
            predicates.append(DiavgeiaDecision.decision_type_id == self.decision_type)
        if self.from_date:
            predicates.append(DiavgeiaDecision.issue_date >= self.from_date)
        if self.to_date:
            predicates.append(DiavgeiaDecision.issue_date <= inclusive_upper_bound(self.to_date))
        if self.status:
            predicates.append(DiavgeiaDecision.status == self.status)
        return predicates


class DecisionCache:
    """
    Facade over the ``diavgeia_decisions`` table and the remote registry.

    Args:
        session: SQLAlchemy session (``db.session`` inside the app)
        registry: object with ``search(params)`` and ``get_decision(ada)``
        clock: callable returning the current naive UTC datetime
    """

    def __init__(self, session, registry, clock: Callable = utcnow,
                 default_page_size: int = 20, max_page_size: int = 100):
        self.session = session
        self.registry = registry
        self.clock = clock
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

    def find(self, ada: str) -> Optional[DiavgeiaDecision]:
        return self.session.query(DiavgeiaDecision).filter_by(ada=ada).first()

    def upsert(self, payload: Dict, commit: bool = True) -> DiavgeiaDecision:
        """
        Insert or update the cached copy of a registry payload.

        This is the only write path into ``diavgeia_decisions``.
        """
        ada = str(payload.get('ada') or '').strip()
        if not ada:
            raise ValidationError("Decision payload has no ADA")

        now = self.clock()
        values = decision_columns(payload)
        decision = self.find(ada)

        if decision is None:
            decision = DiavgeiaDecision(ada=ada, created_at=now, **values)
            self.session.add(decision)
        else:
            for column, value in values.items():
                setattr(decision, column, value)
        decision.updated_at = now
        decision.last_fetched_at = now

        if commit:
            self.session.commit()
        else:
            self.session.flush()
        return decision

    def get_by_id(self, ada: str, force_refresh: bool = False) -> DiavgeiaDecision:
        if not ada:
            raise ValidationError("ADA is required")

        if not force_refresh:
            cached = self.find(ada)
            if cached is not None:
                logger.debug(f"Cache hit for decision {ada}")
                return cached

        logger.debug(f"Fetching decision {ada} from registry")
        payload = self.registry.get_decision(ada)
        if not payload:
            raise NotFoundError(f"Decision with ADA {ada} not found")
        if not payload.get('ada'):
            payload = dict(payload, ada=ada)
        return self.upsert(payload)

    def search(self, params: Dict, force_refresh: bool = False) -> Dict:
        """
        Search decisions.

        Cache mode unless ``force_refresh`` is set or an ``ada`` filter is
        given, in which case the whole query goes to the registry and every
        returned decision is cached on the way back.
        """
        if force_refresh or (params.get('ada') or '').strip():
            return self._search_remote(params)
        return self._search_cache(params)

    def _page_args(self, params: Dict):
        page = parse_page(params.get('page'))
        size = parse_page_size(params.get('size'), self.default_page_size, self.max_page_size)
        return page, size

    def _search_cache(self, params: Dict) -> Dict:
        page, size = self._page_args(params)
        predicates = SearchFilters.from_params(params).predicates()

        query = self.session.query(DiavgeiaDecision).filter(*predicates)
        total = self.session.query(func.count(DiavgeiaDecision.id)).filter(*predicates).scalar()
        decisions = (
            query.order_by(DiavgeiaDecision.issue_date.desc(), DiavgeiaDecision.updated_at.desc(),
                           DiavgeiaDecision.id.desc())
            .limit(size)
            .offset(page * size)
            .all()
        )

        return {
            'decisions': [decision.to_dict() for decision in decisions],
            'info': {
                'page': page,
                'size': size,
                'total': total,
                'source': 'cache'
            }
        }

    def _search_remote(self, params: Dict) -> Dict:
        page, size = self._page_args(params)
        result = self.registry.search(dict(params, page=page, size=size))

        decisions = result.get('decisions')
        if isinstance(decisions, list):
            for payload in decisions:
                self._cache_quietly(payload)

        info = result.get('info')
        if isinstance(info, dict):
            info.setdefault('source', 'remote')
        return result

    def _cache_quietly(self, payload):
        ada = payload.get('ada') if isinstance(payload, dict) else None
        try:
            self.upsert(payload)
        except Exception as e:
            self.session.rollback()
            logger.error(f"Failed to cache decision {ada}: {str(e)}")

    def stats(self, recent_days: int = 30) -> Dict:
        """Counts shown on the dashboard"""
        since = (self.clock() - timedelta(days=recent_days)).strftime('%Y-%m-%d')
        total_cached = self.session.query(func.count(DiavgeiaDecision.id)).scalar()
        linked_to_cases = self.session.query(
            func.count(func.distinct(CaseDiavgeiaLink.decision_ada))
        ).scalar()
        recent_decisions = self.session.query(func.count(DiavgeiaDecision.id)).filter(
            DiavgeiaDecision.issue_date >= since
        ).scalar()

        return {
            'total_cached': total_cached,
            'linked_to_cases': linked_to_cases,
            'recent_decisions': recent_decisions
        }
