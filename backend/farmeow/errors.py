"""Error taxonomy shared by services and HTTP handlers.

Every error knows the HTTP status it maps to; the handlers registered in
``create_app`` turn them into JSON bodies.
"""

from typing import Any, Dict, Optional

from flask import jsonify
from werkzeug.exceptions import HTTPException


class FarMeowError(Exception):
    status_code = 500
    error_type = 'internal_error'

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {'error': self.message, 'type': self.error_type}
        payload.update({k: v for k, v in self.details.items() if v is not None})
        return payload


class ValidationError(FarMeowError):
    status_code = 400
    error_type = 'validation_error'


class IneligibleError(FarMeowError):
    """An identity check failed. ``check`` names the predicate that failed."""

    status_code = 400
    error_type = 'ineligible'

    def __init__(self, check: str, threshold: int, actual: Optional[int] = None, message: Optional[str] = None):
        super().__init__(message or check, check=check, threshold=threshold, actual=actual)
        self.check = check
        self.threshold = threshold
        self.actual = actual


class NotFoundError(FarMeowError):
    status_code = 404
    error_type = 'not_found'


class ConflictError(FarMeowError):
    """Local state disagrees with the contract; acting now would be wrong."""

    status_code = 409
    error_type = 'conflict'


class UpstreamError(FarMeowError):
    """Identity API or chain RPC failure. Never retried automatically."""

    status_code = 500
    error_type = 'upstream_error'


class ContractCallError(FarMeowError):
    """A transaction could not be sent, reverted, or was not confirmed in time.

    ``pending`` is set when the transaction was broadcast but its receipt
    never arrived; it may still be mined under ``tx_hash``.
    """

    status_code = 500
    error_type = 'contract_call_error'

    def __init__(
        self,
        message: str,
        function: Optional[str] = None,
        tx_hash: Optional[str] = None,
        pending: bool = False,
    ):
        super().__init__(message, function=function, tx_hash=tx_hash)
        self.function = function
        self.tx_hash = tx_hash
        self.pending = pending


def register_error_handlers(app) -> None:
    """Render every failure at the request boundary as a JSON body."""

    @app.errorhandler(FarMeowError)
    def handle_farmeow_error(exc):
        if exc.status_code >= 500:
            app.logger.error(f"[request-failed] {exc.error_type}: {exc.message}")
        else:
            app.logger.info(f"[request-rejected] {exc.error_type}: {exc.message}")
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_exception(exc):
        return jsonify({'error': exc.description, 'type': exc.name.lower().replace(' ', '_')}), exc.code

    @app.errorhandler(Exception)
    def handle_unexpected(exc):
        app.logger.exception("[request-crashed] unhandled error")
        return jsonify({'error': 'Internal server error', 'type': 'internal_error'}), 500
