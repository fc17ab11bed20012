from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv

# Load dotenv files early so Settings() picks up test overrides via os.environ
TEST_ROOT = Path(__file__).resolve().parent
# Load test/.env first, then fallback to test/.env.example for defaults
load_dotenv(TEST_ROOT / ".env", override=False)
load_dotenv(TEST_ROOT / ".env.example", override=False)
