"""Audit trail — one structured record per security-relevant decision.

Records go through the ``multis.audit`` logger, so they land in
``audit.log`` as JSON lines and also surface in the main log stream.
"""

from core.logger import MultisLogger

_audit_logger = MultisLogger.get_audit_logger()


def audit(action: str, **fields: object) -> None:
    """Emit an audit record for *action* with arbitrary context *fields*.

    Example::

        audit("exec", user_id="42", command="rm -rf /", allowed=False,
              reason="Command 'rm' is explicitly denied")
    """
    extra = {"action": action, "audit": True}
    for key, value in fields.items():
        if value is not None:
            extra[key] = value
    _audit_logger.info("audit:%s", action, extra=extra)
