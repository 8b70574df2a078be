from flask import Flask, request, jsonify, g
from flask_cors import CORS
import datetime as _dt
import logging
import json
from time import perf_counter

from .errors import InvalidInput
from .models import Coordinate
from .services import Services, build_services
from .settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)


def configure_logging(cfg: Settings):
    handlers = [logging.StreamHandler()]
    if cfg.LOG_FILE:
        handlers.insert(0, logging.FileHandler(cfg.LOG_FILE))
    logging.basicConfig(
        level=getattr(logging, cfg.LOG_LEVEL, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def _parse_departure_time(value):
    if value in (None, ''):
        return None
    try:
        moment = _dt.datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        raise InvalidInput(f"departure_time must be ISO-8601, got {value!r}")
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=_dt.timezone.utc)
    return moment


def create_app(services: Services = None, cfg: Settings = None):
    cfg = cfg or default_settings
    if services is None:
        services = build_services(cfg)

    app = Flask(__name__)
    CORS(app)  # Enable CORS for all routes
    app.extensions['transit_midpoint'] = services

    resolver = services.resolver
    ledger = services.ledger
    geocoder = services.geocoder

    # Per-request timing: record start time and log duration on completion
    @app.before_request
    def _start_timer():
        g._start_time = perf_counter()

    @app.after_request
    def _log_request_duration(response):
        start = getattr(g, '_start_time', None)
        if start is not None:
            duration_ms = (perf_counter() - start) * 1000.0
            response.headers['X-Process-Time-ms'] = f"{duration_ms:.1f}"
            logger.info(
                "request completed: method=%s path=%s status=%s duration_ms=%.1f remote_addr=%s",
                request.method,
                request.full_path if request.query_string else request.path,
                response.status_code,
                duration_ms,
                request.remote_addr,
            )
        return response

    @app.teardown_request
    def _teardown_request_log(error=None):
        # Unhandled exceptions still get a duration line
        if error is not None:
            start = getattr(g, '_start_time', None)
            duration_ms = (perf_counter() - start) * 1000.0 if start is not None else None
            logger.error(
                "request error: method=%s path=%s duration_ms=%s error=%s",
                request.method,
                request.path,
                f"{duration_ms:.1f}" if duration_ms is not None else 'unknown',
                repr(error),
            )

    @app.route('/', methods=['GET'])
    def health_check():
        """Health check endpoint"""
        return jsonify({
            'message': 'Transit Midpoint API is running!',
            'endpoints': {
                'find_middle_point': '/api/find-middle-point',
                'geocode': '/api/geocode',
                'budget': '/api/budget',
                'health': '/'
            },
            'providers': [p.provider_id for p in resolver.providers if not p.disabled],
            'geocoder': geocoder is not None,
            'status': 'healthy'
        })

    @app.route('/api/geocode', methods=['POST'])
    def geocode_address():
        """
        Geocode a single address
        Expected JSON: {"address": "123 Main St, City, State"}
        """
        logger.info("=== GEOCODE REQUEST ===")

        if not geocoder:
            logger.error("Google Maps API key not configured - cannot geocode")
            return jsonify({'success': False, 'error': 'Geocoding is not configured'}), 503

        data = request.get_json(silent=True)
        if not data or not data.get('address'):
            logger.error("Address not provided in request")
            return jsonify({'success': False, 'error': 'Address is required'}), 400

        address = data['address']
        result = geocoder.geocode_address(address)
        if result:
            logger.info(f"Geocoding successful - lat: {result['lat']}, lng: {result['lng']}")
            return jsonify({'success': True, 'data': result})

        logger.warning(f"Failed to geocode address: '{address}'")
        return jsonify({
            'success': False,
            'error': 'Could not geocode the provided address'
        }), 404

    def _resolve_locations(data):
        """origin/destination from coordinates, or from address1/address2 via the geocoder."""
        origin = data.get('origin')
        destination = data.get('destination')
        if origin is not None and destination is not None:
            return Coordinate.coerce(origin), Coordinate.coerce(destination), None

        address1 = data.get('address1')
        address2 = data.get('address2')
        if not address1 or not address2:
            raise InvalidInput("Both origin and destination (or address1 and address2) are required")
        if not geocoder:
            return None, None, (jsonify({'success': False, 'error': 'Geocoding is not configured'}), 503)

        located = []
        for address in (address1, address2):
            result = geocoder.geocode_address(address)
            if not result:
                raise InvalidInput(f"Could not geocode address: {address!r}")
            located.append(Coordinate(result['lat'], result['lng']))
        return located[0], located[1], None

    @app.route('/api/find-middle-point', methods=['POST'])
    def find_middle_point():
        """
        Find the meeting point that balances transit time for both people
        Expected JSON: {
            "origin": {"lat": 40.7580, "lng": -73.9855},
            "destination": {"lat": 40.7359, "lng": -73.9906},
            "user_mode": "train",          // optional: walk | bike | train | car
            "friend_mode": "train",        // optional
            "departure_time": "2025-01-01T09:00:00Z"  // optional
        }
        or "address1"/"address2" strings instead of origin/destination.
        """
        logger.info("=== FIND MIDDLE POINT REQUEST ===")

        data = request.get_json(silent=True)
        logger.info(f"Request data received: {json.dumps(data) if data else 'None'}")
        if not isinstance(data, dict):
            logger.error("No JSON data provided in request")
            return jsonify({'success': False, 'error': 'JSON data is required'}), 400

        try:
            origin, destination, early_response = _resolve_locations(data)
            if early_response is not None:
                return early_response
            departure_time = _parse_departure_time(data.get('departure_time'))

            _algo_start = perf_counter()
            result = resolver.resolve_sync(
                origin,
                destination,
                data.get('user_mode'),
                data.get('friend_mode'),
                departure_time,
            )
            _compute_ms = (perf_counter() - _algo_start) * 1000.0
        except InvalidInput as e:
            logger.warning(f"Invalid input: {e}")
            return jsonify({
                'success': False,
                'error': InvalidInput.user_message,
                'detail': str(e)
            }), 400

        logger.info("Time to find middle point = %.1f ms (used_provider=%s)", _compute_ms, result.used_provider)
        logger.info("=== END FIND MIDDLE POINT REQUEST ===")

        response = jsonify({'success': True, 'data': result.to_dict()})
        response.headers['X-Compute-Time-ms'] = f"{_compute_ms:.1f}"
        return response

    @app.route('/api/budget', methods=['GET'])
    def budget_status():
        """Current month's usage for every provider"""
        return jsonify({'success': True, 'data': ledger.status()})

    @app.route('/api/budget/<provider_id>/reset', methods=['POST'])
    def reset_budget(provider_id):
        """Zero a provider's counters for the current month (debug tooling)"""
        if provider_id not in ledger.provider_ids:
            return jsonify({'success': False, 'error': f'Unknown provider: {provider_id}'}), 404
        state = ledger.reset(provider_id)
        return jsonify({'success': True, 'data': state.to_dict()})

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Endpoint not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'error': 'Method not allowed'}), 405

    @app.errorhandler(500)
    def internal_error(error):
        return jsonify({'error': 'Internal server error'}), 500

    return app


configure_logging(default_settings)
app = create_app()


if __name__ == '__main__':
    if not default_settings.GOOGLE_MAPS_API_KEY and not default_settings.HERE_API_KEY:
        print("\n" + "="*50)
        print("SETUP REQUIRED:")
        print("="*50)
        print("1. Get a Google Maps API key (Directions + Geocoding APIs) and/or a HERE API key")
        print("2. Edit the .env file: GOOGLE_MAPS_API_KEY=... and/or HERE_API_KEY=...")
        print("3. Restart the app")
        print("="*50)
        print("API will start but only the geographic midpoint will be returned\n")
    else:
        print("Starting Transit Midpoint API...")

    app.run(host=default_settings.HOST, port=default_settings.PORT, debug=True)
