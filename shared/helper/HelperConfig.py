"""Environment based configuration shared by the API server, the runner and every client."""

import logging
import os

from dotenv import load_dotenv

from shared.models.config import PipelineSettings

TRUE_VALUES = ("true", "1", "yes", "on")


class HelperConfig:
    """Reads settings from environment variables, optionally pre-loaded from a .env file.

    Keys are case-insensitive. An unset or empty variable falls back to the default, and a
    default of None marks the key as required.
    """

    def __init__(self, logger: logging.Logger | logging.LoggerAdapter, env_file: str | None = None) -> None:
        self._logger = logger
        # values already exported in the environment win over the .env file
        load_dotenv(dotenv_path=env_file, override=False)
        self._pipeline_settings: PipelineSettings | None = None

    ##########################################
    ################ READER ##################
    ##########################################

    def _read(self, key: str) -> str | None:
        raw = os.getenv(key.upper(), "").strip()
        return raw or None

    def _missing(self, key: str, default):
        if default is None:
            raise ValueError(f"Environment variable '{key.upper()}' is not set.")
        return default

    ##########################################
    ################ GETTER ##################
    ##########################################

    def get_string_val(self, key: str, default: str | None = None) -> str:
        """
        Raises:
            ValueError: If the variable is not set and no default is provided.
        """
        raw = self._read(key)
        return raw if raw is not None else self._missing(key, default)

    def get_number_val(self, key: str, default: float | int | None = None) -> float | int:
        """Read an int ("3") or a float ("0.5").

        Raises:
            ValueError: If the variable is missing without default or is not a number.
        """
        raw = self._read(key)
        if raw is None:
            return self._missing(key, default)
        try:
            return float(raw) if any(c in raw for c in ".eE") else int(raw)
        except ValueError as e:
            raise ValueError(f"Environment variable '{key.upper()}' is not a valid number: '{raw}'.") from e

    def get_bool_val(self, key: str, default: bool | None = None) -> bool:
        """Anything but true/1/yes/on (any case) reads as False."""
        raw = self._read(key)
        if raw is None:
            return self._missing(key, default)
        return raw.lower() in TRUE_VALUES

    def get_list_val(self, key: str, default: list | None = None, separator: str = ",", element_type: type = str) -> list:
        """Read a bracketed list such as "[pdf,docx,txt]". "[]" is an empty list.

        Args:
            key (str): Environment variable name.
            default (list | None): Fallback value if the variable is not set.
            separator (str): Delimiter between the elements.
            element_type (type): Every element is cast to this type.

        Raises:
            ValueError: If the brackets are missing or an element cannot be cast.
        """
        raw = self._read(key)
        if raw is None:
            return self._missing(key, default)
        if not (raw.startswith("[") and raw.endswith("]")):
            raise ValueError(f"Environment variable '{key.upper()}' must look like '[a{separator}b]', got '{raw}'.")
        try:
            return [element_type(part.strip()) for part in raw[1:-1].split(separator) if part.strip()]
        except ValueError as e:
            raise ValueError(
                f"Environment variable '{key.upper()}' has an element that is not a {element_type.__name__}: {e}"
            ) from e

    def get_pipeline_settings(self) -> PipelineSettings:
        """Build (once) the tunables of the processing pipeline from the environment.

        Every field of PipelineSettings maps to the upper-cased env key of the same name,
        e.g. chunk_size → CHUNK_SIZE.

        Raises:
            ValueError: If a value cannot be parsed or the combination is invalid.
        """
        if self._pipeline_settings is None:
            readers = {bool: self.get_bool_val}
            values = {
                name: readers.get(field.annotation, self.get_number_val)(name, default=field.default)
                for name, field in PipelineSettings.model_fields.items()
            }
            self._pipeline_settings = PipelineSettings(**values)
        return self._pipeline_settings

    def get_logger(self) -> logging.Logger | logging.LoggerAdapter:
        return self._logger
