from flask import Flask, request, jsonify, send_file, current_app
from flask_cors import CORS
from io import BytesIO
import os
import logging

from .config import Config
from .database import db
from .store import RecordStore
from .decision_cache import DecisionCache
from .diavgeia import DiavgeiaClient
from .case_files import CaseFiles
from .share import share_client_from_config
from .errors import OfficeError, ValidationError, StorageError
from .utils import parse_flag

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def get_store():
    return RecordStore(db.session, base_dir=current_app.config.get('NAS_BASE_DIR') or 'cases')


def get_decision_cache():
    return DecisionCache(
        db.session,
        current_app.extensions['diavgeia_registry'],
        default_page_size=current_app.config['DIAVGEIA_DEFAULT_PAGE_SIZE'],
        max_page_size=current_app.config['DIAVGEIA_MAX_PAGE_SIZE'],
    )


def get_case_files():
    return CaseFiles(current_app.extensions['share_factory'])


def request_payload():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def create_app(config_class=Config, registry=None, share_factory=None):
    """
    Build the application.

    Args:
        config_class: configuration object
        registry: Diavgeia client; defaults to a DiavgeiaClient for the
            configured base URL
        share_factory: zero-argument callable returning a share client;
            defaults to the configured backend
    """
    static_folder = getattr(config_class, 'FRONTEND_DIST', None)
    app = Flask(__name__, static_folder=static_folder, static_url_path='/' if static_folder else None)
    app.config.from_object(config_class)

    # Initialize extensions
    db.init_app(app)
    CORS(app, origins=app.config.get('CORS_ORIGINS') or '*')

    if registry is None:
        registry = DiavgeiaClient(
            base_url=app.config['DIAVGEIA_BASE_URL'],
            timeout=app.config['DIAVGEIA_TIMEOUT'],
            max_page_size=app.config['DIAVGEIA_MAX_PAGE_SIZE'],
        )
    if share_factory is None:
        def share_factory():
            return share_client_from_config(app.config)

    app.extensions['diavgeia_registry'] = registry
    app.extensions['share_factory'] = share_factory

    with app.app_context():
        db.create_all()

    @app.route('/')
    def index():
        if not app.static_folder or not os.path.exists(os.path.join(app.static_folder, 'index.html')):
            return jsonify({'error': 'Not found'}), 404
        return app.send_static_file('index.html')

    # ---------- cases ----------

    @app.route('/api/cases', methods=['GET'])
    def list_cases():
        rows = get_store().list_cases(q=request.args.get('q', ''), status=request.args.get('status'))
        return jsonify([row.to_dict() for row in rows]), 200

    @app.route('/api/cases', methods=['POST'])
    def create_case():
        case = get_store().create_case(request_payload())
        return jsonify(case.to_dict()), 201

    @app.route('/api/cases/<int:case_id>', methods=['GET'])
    def get_case(case_id):
        return jsonify(get_store().get_case(case_id).to_dict()), 200

    @app.route('/api/cases/<int:case_id>', methods=['PUT'])
    def update_case(case_id):
        case = get_store().update_case(case_id, request_payload())
        return jsonify(case.to_dict()), 200

    @app.route('/api/cases/<int:case_id>/details', methods=['GET'])
    def case_details(case_id):
        store = get_store()
        case = store.get_case(case_id)
        customers, source = store.resolve_case_customers(case)

        return jsonify({
            'case': case.to_dict(),
            'customers': [customer.to_dict() for customer in customers],
            'customer_source': source,
            'tasks': [task.to_dict() for task in store.case_tasks(case.id)],
            'diavgeia_links': [link.to_dict() for link in store.list_decision_links(case.id)]
        }), 200

    @app.route('/api/cases/<int:case_id>/customers', methods=['GET'])
    def get_case_customers(case_id):
        store = get_store()
        case = store.get_case(case_id)
        return jsonify([customer.to_dict() for customer in store.case_customers(case.id)]), 200

    @app.route('/api/cases/<int:case_id>/customers', methods=['PUT'])
    def set_case_customers(case_id):
        customer_ids = request_payload().get('customer_ids') or []
        if not isinstance(customer_ids, list):
            raise ValidationError("customer_ids must be a list")
        customers = get_store().set_case_customers(case_id, customer_ids)
        return jsonify([customer.to_dict() for customer in customers]), 200

    @app.route('/api/cases/<int:case_id>/tasks', methods=['POST'])
    def create_case_task(case_id):
        store = get_store()
        case = store.get_case(case_id)
        task = store.create_task(request_payload(), case_id=case.id)
        return jsonify(task.to_dict()), 201

    # ---------- case files on the network share ----------

    @app.route('/api/cases/<int:case_id>/files/ensure-folder', methods=['POST'])
    def ensure_case_folder(case_id):
        case = get_store().get_case(case_id)
        folder = get_case_files().ensure_folder(case)
        return jsonify({'ok': True, 'folder': folder}), 200

    @app.route('/api/cases/<int:case_id>/files', methods=['GET'])
    def list_case_files(case_id):
        case = get_store().get_case(case_id)
        return jsonify(get_case_files().list_files(case)), 200

    @app.route('/api/cases/<int:case_id>/files/upload', methods=['POST'])
    def upload_case_file(case_id):
        case = get_store().get_case(case_id)
        upload = request.files.get('file')
        if upload is None:
            raise ValidationError("No file uploaded")

        saved_as = get_case_files().upload(case, upload.filename or '', upload.read())
        return jsonify({'ok': True, 'saved_as': saved_as}), 200

    @app.route('/api/cases/<int:case_id>/files/download', methods=['GET'])
    def download_case_file(case_id):
        case = get_store().get_case(case_id)
        file_name, data = get_case_files().download(case, request.args.get('name', ''))
        return send_file(BytesIO(data), as_attachment=True, download_name=file_name,
                         mimetype='application/octet-stream')

    # ---------- case <-> decision links ----------

    @app.route('/api/cases/<int:case_id>/diavgeia-links', methods=['POST'])
    def link_decision(case_id):
        data = request_payload()
        link = get_store().link_decision(case_id, data.get('decision_ada'), data.get('notes') or '')
        return jsonify(link.to_dict()), 201

    @app.route('/api/cases/<int:case_id>/diavgeia-links', methods=['GET'])
    def list_decision_links(case_id):
        store = get_store()
        case = store.get_case(case_id)
        return jsonify([link.to_dict() for link in store.list_decision_links(case.id)]), 200

    @app.route('/api/cases/<int:case_id>/diavgeia-links/<int:link_id>', methods=['DELETE'])
    def unlink_decision(case_id, link_id):
        get_store().unlink_decision(case_id, link_id)
        return jsonify({'ok': True}), 200

    # ---------- customers ----------

    @app.route('/api/customers', methods=['GET'])
    def list_customers():
        rows = get_store().list_customers(q=request.args.get('q', ''))
        return jsonify([row.to_dict() for row in rows]), 200

    @app.route('/api/customers', methods=['POST'])
    def create_customer():
        customer = get_store().create_customer(request_payload())
        return jsonify(customer.to_dict()), 201

    @app.route('/api/customers/<int:customer_id>', methods=['GET'])
    def get_customer(customer_id):
        return jsonify(get_store().get_customer(customer_id).to_dict()), 200

    @app.route('/api/customers/<int:customer_id>', methods=['PUT'])
    def update_customer(customer_id):
        customer = get_store().update_customer(customer_id, request_payload())
        return jsonify(customer.to_dict()), 200

    @app.route('/api/customers/<int:customer_id>/details', methods=['GET'])
    def customer_details(customer_id):
        store = get_store()
        customer = store.get_customer(customer_id)
        cases, source = store.customer_cases(customer)

        return jsonify({
            'customer': customer.to_dict(),
            'cases': [case.to_dict() for case in cases],
            'case_source': source
        }), 200

    # ---------- tasks ----------

    @app.route('/api/tasks', methods=['GET'])
    def list_tasks():
        case_id = request.args.get('case_id', type=int)
        rows = get_store().list_tasks(q=request.args.get('q', ''), case_id=case_id)
        return jsonify([row.to_dict() for row in rows]), 200

    @app.route('/api/tasks', methods=['POST'])
    def create_task():
        task = get_store().create_task(request_payload())
        return jsonify(task.to_dict()), 201

    @app.route('/api/tasks/<int:task_id>', methods=['GET'])
    def get_task(task_id):
        return jsonify(get_store().get_task(task_id).to_dict()), 200

    @app.route('/api/tasks/<int:task_id>', methods=['PUT'])
    def update_task(task_id):
        task = get_store().update_task(task_id, request_payload())
        return jsonify(task.to_dict()), 200

    # ---------- dashboard ----------

    @app.route('/api/dashboard/metrics', methods=['GET'])
    def dashboard_metrics():
        """Counts for the dashboard cards"""
        store = get_store()

        try:
            completed_cases = get_case_files().count_entries(app.config.get('NAS_COMPLETED_DIR') or 'completed')
        except StorageError as e:
            # folder missing or share unreachable
            logger.warning(f"Completed cases folder unavailable: {e.message}")
            completed_cases = 0

        return jsonify({
            'total_customers': store.count_customers(),
            'active_cases': store.count_active_cases(),
            'completed_cases': completed_cases
        }), 200

    # ---------- Diavgeia ----------

    @app.route('/api/diavgeia/search', methods=['GET'])
    def search_decisions():
        """Search decisions, from the local cache unless refresh=true or ada is given"""
        params = request.args.to_dict()
        force_refresh = parse_flag(params.pop('refresh', None))
        return jsonify(get_decision_cache().search(params, force_refresh=force_refresh)), 200

    @app.route('/api/diavgeia/decisions/<ada>', methods=['GET'])
    def get_decision(ada):
        force_refresh = parse_flag(request.args.get('refresh'))
        decision = get_decision_cache().get_by_id(ada.strip(), force_refresh=force_refresh)
        return jsonify(decision.to_dict()), 200

    @app.route('/api/diavgeia/fetch/<ada>', methods=['POST'])
    def fetch_decision(ada):
        decision = get_decision_cache().get_by_id(ada.strip(), force_refresh=True)
        return jsonify(decision.to_dict()), 201

    @app.route('/api/diavgeia/stats', methods=['GET'])
    def decision_statistics():
        return jsonify(get_decision_cache().stats()), 200

    @app.route('/api/health', methods=['GET'])
    def health():
        return jsonify({'ok': True}), 200

    # ---------- errors ----------

    @app.errorhandler(OfficeError)
    def office_error(error):
        if error.status_code >= 500:
            logger.error(f"{request.method} {request.path} failed: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'error': 'Method not allowed'}), 405

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        logger.error(f"Unhandled error on {request.method} {request.path}: {str(error)}")
        return jsonify({'error': 'Internal server error'}), 500

    return app
