"""
Typed GPG options for gpgmail.

``GpgOptions`` names the options understood by the orchestration layer
and keeps everything else in ``extra`` for the engine (passphrase,
always_trust, recipients, keys).
"""

from collections.abc import Mapping
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ..common.exceptions import InvalidOptionsError


class GpgOptions(BaseModel):
    """Options for a GPG encrypt, sign, decrypt or verify request."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    encrypt: Optional[bool] = Field(None, description="Encrypt the message")
    sign: Optional[bool] = Field(None, description="Sign the message")
    sign_as: Optional[Union[str, list[str]]] = Field(
        None, description="Key IDs or addresses to sign with"
    )
    verify: Optional[bool] = Field(None, description="Verify signatures on decrypt")
    import_missing_keys: Optional[bool] = Field(
        None, description="Fetch unknown signer keys from the key server"
    )
    extra: dict[str, Any] = Field(
        default_factory=dict, description="Engine pass-through options"
    )

    @field_validator("sign_as")
    @classmethod
    def validate_sign_as(
        cls, v: Optional[Union[str, list[str]]]
    ) -> Optional[Union[str, list[str]]]:
        """Strip signer identities and reject empty ones."""
        if v is None:
            return v
        if isinstance(v, str):
            v = v.strip()
            if not v:
                raise ValueError("sign_as must not be empty")
            return v
        signers = [s.strip() for s in v]
        if not signers or not all(signers):
            raise ValueError("sign_as must not contain empty identities")
        return signers

    @model_validator(mode="after")
    def check_extra_keys(self) -> "GpgOptions":
        """Keep named options out of the pass-through map."""
        shadowed = set(self.extra) & set(type(self).model_fields)
        if shadowed:
            raise ValueError(
                f"extra options shadow named options: {', '.join(sorted(shadowed))}"
            )
        return self

    @classmethod
    def coerce(cls, value: Any = None, **kwargs: Any) -> "GpgOptions":
        """
        Build options from any accepted shape.

        Accepts None, True (encrypt), a mapping whose unknown keys become
        pass-through options, or an existing GpgOptions. Keyword arguments
        are merged over the value.

        Raises:
            InvalidOptionsError: If the value cannot be validated.
        """
        if isinstance(value, GpgOptions) and not kwargs:
            return value

        if value is None:
            data: dict[str, Any] = {}
        elif value is True:
            data = {"encrypt": True}
        elif isinstance(value, GpgOptions):
            data = value.as_mapping()
        elif isinstance(value, Mapping):
            data = dict(value)
        else:
            raise InvalidOptionsError(
                f"Unsupported GPG options value: {value!r}",
                {"type": type(value).__name__},
            )
        data.update(kwargs)

        named = {k: data.pop(k) for k in list(data) if k in cls.model_fields and k != "extra"}
        extra = dict(data.pop("extra", None) or {})
        extra.update(data)

        try:
            return cls(**named, extra=extra)
        except ValidationError as e:
            raise InvalidOptionsError(
                "Invalid GPG options", {"errors": e.errors(include_url=False)}
            )

    def as_mapping(self) -> dict[str, Any]:
        """Flatten named options that are set together with pass-through options."""
        data = {
            name: getattr(self, name)
            for name in ("encrypt", "sign", "sign_as", "verify", "import_missing_keys")
            if getattr(self, name) is not None
        }
        data.update(self.extra)
        return data

    def without_import_flag(self) -> "GpgOptions":
        """Options as forwarded to the engine."""
        return self.model_copy(update={"import_missing_keys": None})

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a pass-through option."""
        return self.extra.get(key, default)

    @property
    def wants_signature(self) -> bool:
        return bool(self.sign or self.sign_as)

    @property
    def wants_encryption(self) -> bool:
        # encrypt defaults to on, except for sign-only requests
        if self.encrypt is not None:
            return self.encrypt
        return not self.wants_signature

    @property
    def signers(self) -> list[str]:
        if self.sign_as is None:
            return []
        if isinstance(self.sign_as, str):
            return [self.sign_as]
        return list(self.sign_as)
