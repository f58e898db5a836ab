"""Open Service Broker API implementation."""

import logging
from typing import Any, Dict, Optional, Tuple

from flask import Flask, request, jsonify

from aws_service_broker import __version__
from aws_service_broker.config import Config
from aws_service_broker.exceptions import BadRequestError
from aws_service_broker.models.service_broker import BindRequest, ProvisionRequest
from aws_service_broker.providers.aws_provider import (
    SessionFactory, create_aws_clients, create_template_source
)
from aws_service_broker.services.broker import AwsBroker
from aws_service_broker.services.catalog import CatalogRefresher
from aws_service_broker.storage.factory import StorageFactory
from aws_service_broker.utils.cache import Cache
from aws_service_broker.utils.error_handlers import RequestContextLogger, register_error_handlers

logger = logging.getLogger(__name__)

ORIGINATING_IDENTITY_HEADER = 'X-Broker-API-Originating-Identity'


def _accepts_incomplete() -> bool:
    return request.args.get('accepts_incomplete', 'false').lower() == 'true'


def _originating_identity() -> Optional[str]:
    return request.headers.get(ORIGINATING_IDENTITY_HEADER)


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise BadRequestError("Request body must be a JSON object")
    return data


def create_app(broker: AwsBroker) -> Flask:
    """Create Flask application with OSB API routes."""
    app = Flask(__name__)
    app.config['BROKER'] = broker

    register_error_handlers(app)
    RequestContextLogger(app)

    @app.route('/v2/catalog', methods=['GET'])
    def get_catalog():
        """Get service catalog."""
        catalog = broker.get_catalog()
        return jsonify(catalog.to_osb_dict()), 200

    @app.route('/v2/service_instances/<instance_id>', methods=['PUT'])
    def provision_service_instance(instance_id: str):
        """Provision a service instance."""
        provision_request = ProvisionRequest.model_validate(_json_body())

        response = broker.provision(
            instance_id=instance_id,
            service_id=provision_request.service_id,
            plan_id=provision_request.plan_id,
            parameters=provision_request.parameters,
            accepts_incomplete=_accepts_incomplete(),
            user_id=_originating_identity()
        )
        return jsonify(response.model_dump(exclude_none=True)), 202 if response.is_async else 201

    @app.route('/v2/service_instances/<instance_id>', methods=['DELETE'])
    def deprovision_service_instance(instance_id: str):
        """Deprovision a service instance."""
        response = broker.deprovision(
            instance_id=instance_id,
            accepts_incomplete=_accepts_incomplete(),
            user_id=_originating_identity()
        )
        return jsonify(response.model_dump(exclude_none=True)), 202 if response.is_async else 200

    @app.route('/v2/service_instances/<instance_id>/last_operation', methods=['GET'])
    def get_last_operation(instance_id: str):
        """Get last operation status."""
        response = broker.last_operation(instance_id)
        return jsonify(response.model_dump(mode='json', exclude_none=True)), 200

    @app.route('/v2/service_instances/<instance_id>/service_bindings/<binding_id>', methods=['PUT'])
    def create_service_binding(instance_id: str, binding_id: str):
        """Create a service binding."""
        bind_request = BindRequest.model_validate(_json_body())

        response = broker.bind(
            binding_id=binding_id,
            instance_id=instance_id,
            service_id=bind_request.service_id,
            parameters=bind_request.parameters,
            user_id=_originating_identity()
        )
        return jsonify(response.model_dump()), 200 if response.exists else 201

    @app.route('/v2/service_instances/<instance_id>/service_bindings/<binding_id>', methods=['DELETE'])
    def delete_service_binding(instance_id: str, binding_id: str):
        """Delete a service binding."""
        response = broker.unbind(binding_id, user_id=_originating_identity())
        return jsonify(response.model_dump()), 200

    # Health check endpoint
    @app.route('/health', methods=['GET'])
    def health_check():
        """Health check endpoint."""
        return jsonify({
            "status": "healthy",
            "service": "aws-service-broker",
            "version": __version__
        }), 200

    return app


def create_broker(config: Config) -> Tuple[AwsBroker, CatalogRefresher]:
    """Wire the broker and its catalog refresher from configuration."""
    session_factory = SessionFactory()
    db = StorageFactory.create_data_store(config, session_factory)

    catalog_cache: Cache = Cache("catalog")
    listing_cache: Cache = Cache("listings")

    broker = AwsBroker(
        options=config.broker,
        db=db,
        clients=create_aws_clients(session_factory),
        catalog_cache=catalog_cache,
        listing_cache=listing_cache
    )
    refresher = CatalogRefresher(
        create_template_source(
            session_factory, config.broker.s3_bucket, config.broker.s3_region, config.broker.s3_key
        ),
        catalog_cache,
        listing_cache,
        config.broker.broker_id
    )
    return broker, refresher


def run_server(config: Optional[Config] = None):
    """Run the Flask server."""
    config = config or Config.from_env()
    config.validate()

    broker, refresher = create_broker(config)
    refresher.refresh()
    refresher.start(config.broker.catalog_refresh_interval)

    app = create_app(broker)
    logger.info(f"Starting AWS Service Broker on {config.api.host}:{config.api.port}")
    try:
        app.run(
            host=config.api.host,
            port=config.api.port,
            debug=config.api.debug,
            use_reloader=False
        )
    finally:
        refresher.stop()
        broker.db.close()
