"""
Erynoa passkey backend — Flask application entry point.

Serves ceremony challenges and accepts passkey public key registrations for
did:erynoa identities. Intended for development and integration testing of
the passkey client.

Usage:
    python app.py
"""

import os

from flask import Flask, jsonify
from flask_cors import CORS

from config import config


def create_app() -> Flask:
    app = Flask(__name__)
    app.secret_key = config.SECRET_KEY
    app.config['ENV'] = config.ENV
    app.config['DEBUG'] = config.DEBUG

    CORS(app, resources={
        r"/api/*": {"origins": "*"}
    })

    from routes.passkey_routes import passkey_bp

    app.register_blueprint(passkey_bp)

    @app.route('/health')
    def health():
        return jsonify({
            "status": "ok",
            "rpId": config.RP_ID
        })

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(500)
    def internal_error(error):
        return jsonify({"error": "Internal server error"}), 500

    return app


if __name__ == '__main__':
    app = create_app()
    port = int(os.getenv('PORT', 5000))
    app.run(host='0.0.0.0', port=port, debug=config.DEBUG)
