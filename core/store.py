"""On-disk persistence for pipeline state and review artifacts.

Everything lives under ``<project_dir>/.buildgate/``. Pipeline state is
written atomically (temp file then rename) so a crash mid-write never leaves a
truncated state file behind.
"""

import json
import logging
import os
from dataclasses import asdict

from config.defaults import DEFAULTS
from core.errors import StateError
from core.state import DeveloperProfile, PipelineState, utc_now

logger = logging.getLogger(__name__)

STATE_FILENAME = "state.json"
PROFILE_FILENAME = "profile.json"


def state_dir(project_dir):
    return os.path.join(project_dir, DEFAULTS["state_dir"])


def state_file_path(project_dir):
    return os.path.join(state_dir(project_dir), STATE_FILENAME)


def load_state(project_dir):
    """Load pipeline state, or None if there is no readable state file."""
    path = state_file_path(project_dir)
    try:
        with open(path) as f:
            return PipelineState.from_dict(json.load(f))
    except FileNotFoundError:
        return None
    except (OSError, ValueError, TypeError) as e:
        logger.warning("Ignoring unreadable pipeline state at %s: %s", path, e)
        return None


def save_state(project_dir, state: PipelineState) -> PipelineState:
    """Persist state atomically and return the copy that was written."""
    path = state_file_path(project_dir)
    tmp_path = path + ".tmp"
    updated = state.copy(updated_at=utc_now())

    try:
        os.makedirs(state_dir(project_dir), exist_ok=True)
        with open(tmp_path, "w") as f:
            json.dump(updated.to_dict(), f, indent=2)
        os.replace(tmp_path, path)
    except OSError as e:
        try:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
        except OSError:
            logger.debug("Could not remove temp state file %s", tmp_path)
        raise StateError(f"Failed to save pipeline state: {e}") from e

    return updated


def review_dir(project_dir, epic_number, create=True, prefix="epic"):
    """Per-epic directory for review reports and iteration artifacts.

    Improvement cycles use their own prefix so they never share a directory
    with a build epic of the same number.
    """
    path = os.path.join(state_dir(project_dir), "reviews", f"{prefix}-{epic_number}")
    if create:
        os.makedirs(path, exist_ok=True)
    return path


def save_report(directory, filename, text):
    """Write a text report, creating parent directories as needed."""
    path = os.path.join(directory, filename)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as f:
        f.write(text or "")
    return path


def save_json(directory, filename, data):
    path = os.path.join(directory, filename)
    os.makedirs(directory, exist_ok=True)
    with open(path, "w") as f:
        json.dump(data, f, indent=2)
    return path


def load_json(path):
    """Read a JSON document, or None if it is missing or malformed."""
    try:
        with open(path) as f:
            return json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable JSON at %s: %s", path, e)
        return None


def profile_path(project_dir):
    return os.path.join(state_dir(project_dir), PROFILE_FILENAME)


def load_profile(project_dir):
    """Developer profile saved by ``buildgate init``, or None."""
    data = load_json(profile_path(project_dir))
    if not data:
        return None
    try:
        return DeveloperProfile.from_dict(data)
    except (KeyError, TypeError) as e:
        logger.warning("Ignoring invalid developer profile: %s", e)
        return None


def save_profile(project_dir, profile: DeveloperProfile):
    return save_json(state_dir(project_dir), PROFILE_FILENAME, asdict(profile))
