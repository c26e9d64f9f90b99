"""Default pipeline settings."""

DEFAULTS = {
    "state_dir": ".buildgate",
    "max_iterations": 3,        # adversarial review loop
    "max_rejection_cycles": 3,  # sign-off rejections before giving up
    "convergence_threshold": 2,
    "parallel_workers": 3,
    "model": "claude-sonnet-4-5-20250929",
    "max_tokens": 16384,
    "max_file_chars": 20000,    # per file, when building agent context
    "sandbox_timeout": 300,
    "allowed_commands": ["python3", "pytest", "flake8"],
    "test_command": ["python3", "-m", "pytest", "-q"],
}
