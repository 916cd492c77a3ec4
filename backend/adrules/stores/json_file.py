"""JSON file rule store."""

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Sequence, Union

import structlog

from adrules.core.exceptions import PersistenceError
from adrules.models.rule import Rule
from adrules.stores.base import RuleStore, decode_rules, encode_rules

logger = structlog.get_logger()


class JsonFileRuleStore(RuleStore):
    """
    Stores the rules document in a single JSON file.

    Writes go to a temporary file in the same directory which then replaces
    the target, so a crash mid-write leaves the previous document intact.
    """

    backend = "json"

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    async def load_all(self) -> list[Rule]:
        document = await asyncio.to_thread(self._read)
        if document is None:
            return []
        return decode_rules(document)

    async def save_all(self, rules: Sequence[Rule]) -> None:
        document = encode_rules(rules)
        await asyncio.to_thread(self._write, document)
        logger.debug("rules_saved", backend=self.backend, path=str(self.path), rules=len(rules))

    def _read(self):
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                return json.load(fh)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            raise PersistenceError(
                f"Could not read rules file {self.path}",
                details={"error": str(e)},
            )

    def _write(self, document: dict) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(document, fh, indent=2)
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise PersistenceError(
                f"Could not write rules file {self.path}",
                details={"error": str(e)},
            )
