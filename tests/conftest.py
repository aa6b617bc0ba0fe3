import os, tempfile

# keep test runs from writing into the real ~/.local/state log
os.environ.setdefault("TRUSTLINE_LOG", os.path.join(tempfile.mkdtemp(prefix="trustline-log-"), "trustline.log"))

import pytest

from trustline.encoder import ConfigurationEncoder
from trustline.encryption import PayloadEncryptionService
from trustline.settings import KdfParams

FAST_KDF = KdfParams(time_cost=1, memory_cost=8, parallelism=1)
FAST_KDF_ENV = {
    "TRUSTLINE_KDF_TIME_COST": "1",
    "TRUSTLINE_KDF_MEMORY_KIB": "8",
    "TRUSTLINE_KDF_PARALLELISM": "1",
}


@pytest.fixture
def service():
    return PayloadEncryptionService(FAST_KDF)


@pytest.fixture
def encoder():
    return ConfigurationEncoder()


@pytest.fixture
def fingerprint():
    return {
        "primary": {"id": "prompt-textarea", "ariaLabel": "Message"},
        "secondary": {"tagName": "textarea", "role": "textbox"},
        "content": {"textHash": "a1b2c3"},
        "context": {"parentTagName": "form", "siblingIndex": 0, "siblingCount": 1, "depth": 7},
        "attributes": {"data-state": "idle", "autocomplete": "off"},
        "classPatterns": ["input", "primary"],
        "meta": {"generatedAt": 1718000000000, "url": "https://chat.example.com/", "confidence": "high"},
    }


@pytest.fixture
def full_config(fingerprint):
    return {
        "hostname": "chat.example.com",
        "displayName": "Example Chat",
        "positioning": {
            "mode": "custom",
            "selector": 'form > div.composer button[type="submit"]',
            "placement": "before",
            "offset": {"x": 12, "y": -4.5},
            "zIndex": 999999,
            "description": "Next to the send button",
            "fingerprint": fingerprint,
        },
    }
