"""
Parameter Validator

Validates keys and content before any cache or network I/O.
"""

from confsync.common.exceptions import ParameterError
from confsync.common.logging_setup import get_service_logger
from confsync.common.models import MAX_TENANT_LENGTH, is_valid_name

logger = get_service_logger("config.validator")


class ConfigValidator:
    """Validates dataId/group/tenant/content"""

    def validate_key(self, data_id: str | None, group: str | None) -> None:
        """
        Validate a key.

        Args:
            data_id: Config item name
            group: Group (already normalized)

        Raises:
            ParameterError: Blank or containing characters outside [A-Za-z0-9_-.:]
        """
        errors = self._key_errors(data_id, group)
        if errors:
            field, message = errors[0]
            logger.debug(f"Key validation failed: {message}", extra={"errors": [m for _, m in errors]})
            raise ParameterError(message, field=field)

    def validate_publish(self, data_id: str | None, group: str | None, content: str | None) -> None:
        """
        Validate a publish request.

        Raises:
            ParameterError: Invalid key, or blank content
        """
        self.validate_key(data_id, group)
        if content is None or not content.strip():
            raise ParameterError("content invalid", field="content")

    def validate_tenant(self, tenant: str | None) -> None:
        """
        Validate a tenant. Blank is allowed (the default namespace).

        Raises:
            ParameterError: Too long or containing invalid characters
        """
        if not tenant:
            return
        if len(tenant) > MAX_TENANT_LENGTH:
            raise ParameterError(f"tenant too long (max {MAX_TENANT_LENGTH})", field="tenant")
        if not is_valid_name(tenant):
            raise ParameterError("tenant invalid", field="tenant")

    def _key_errors(self, data_id: str | None, group: str | None) -> list[tuple[str, str]]:
        errors: list[tuple[str, str]] = []

        if data_id is None or not data_id.strip():
            errors.append(("dataId", "dataId invalid"))
        elif not is_valid_name(data_id):
            errors.append(("dataId", f"dataId invalid: {data_id!r}"))

        if group is None or not group.strip():
            errors.append(("group", "group invalid"))
        elif not is_valid_name(group):
            errors.append(("group", f"group invalid: {group!r}"))

        return errors
