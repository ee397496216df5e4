from dataclasses import dataclass
import random
import re
import string
import time

_ALPHABET = string.digits + string.ascii_lowercase
_JOB_ID_RE = re.compile(r"^deploy_\d+_[0-9a-z]{7}$")


@dataclass(frozen=True)
class JobId:
    """
    Value Object for the human-friendly external job identifier.
    Format: deploy_<epoch-ms>_<7 base36 chars>.
    """
    value: str

    def __post_init__(self):
        if not self.value:
            raise ValueError("Job ID cannot be empty")

    @classmethod
    def generate(cls) -> "JobId":
        suffix = "".join(random.choices(_ALPHABET, k=7))
        return cls(f"deploy_{int(time.time() * 1000)}_{suffix}")

    @property
    def is_canonical(self) -> bool:
        return bool(_JOB_ID_RE.match(self.value))

    def __str__(self):
        return self.value
