import json
import os
import uuid
import logging
from typing import Iterable, List

from .constants import CLIENT_ID_FILE, DEFAULT_CODES_FILE
from .types import RcCode

logger = logging.getLogger(__name__)


class RcCodeStore:
    """Keeps the captured code list in a small JSON file.

    Codes are stored as a set of comma-delimited lines (see
    :meth:`RcCode.to_line`), so duplicates collapse on save.
    """

    KEY = "rc_codes"

    def __init__(self, path: str = DEFAULT_CODES_FILE) -> None:
        self.path = path

    def load(self) -> List[RcCode]:
        """Read all stored codes; unreadable lines are skipped."""
        if not os.path.exists(self.path):
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            lines = json.load(f).get(self.KEY, [])

        codes: List[RcCode] = []
        for line in lines:
            try:
                codes.append(RcCode.from_line(line))
            except ValueError as e:
                logger.warning("Skipping invalid RC code %r in %s: %s", line, self.path, e)
        logger.debug("Loaded %d RC codes from %s", len(codes), self.path)
        return codes

    def save(self, codes: Iterable[RcCode]) -> None:
        lines = list(dict.fromkeys(code.to_line() for code in codes))
        if not lines:
            self.clear()
            return
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump({self.KEY: lines}, f, indent=4)
        logger.debug("Saved %d RC codes to %s", len(lines), self.path)

    def clear(self) -> None:
        if os.path.exists(self.path):
            os.remove(self.path)
            logger.info("Removed RC code store %s", self.path)


def get_or_create_client_id(path: str = CLIENT_ID_FILE) -> str:
    """
    Reads the persistent MQTT client id from ``path`` or generates and stores a new one.
    """
    client_id = None

    try:
        if os.path.exists(path):
            with open(path, "r", encoding="utf-8") as f:
                client_id = json.load(f).get("client_id")
    except (OSError, ValueError) as e:
        logger.warning("Failed to read client id from %s: %s", path, e)

    if not client_id:
        client_id = f"echowave-{uuid.uuid4().hex}"
        logger.info("Generated new client id: %s", client_id)

        try:
            with open(path, "w", encoding="utf-8") as f:
                json.dump({"client_id": client_id}, f, indent=4)
            logger.info("Client id stored in %s", path)
        except OSError as e:
            logger.error("Failed to store client id in %s: %s", path, e)

    return client_id
