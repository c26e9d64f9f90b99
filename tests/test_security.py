"""Tests for agents.security — regex scan over a real project tree."""

import pytest

from agents.security import SecurityScanner
from core.state import ReviewContext
from core.verifier import verify_findings


def _context(tmp_path):
    return ReviewContext(project_dir=str(tmp_path), epic_number=1, review_dir=str(tmp_path / "r"))


def _scan(tmp_path, files):
    for path, content in files.items():
        full = tmp_path / path
        full.parent.mkdir(parents=True, exist_ok=True)
        full.write_text(content)
    return SecurityScanner()(_context(tmp_path))


def _titles(result):
    return [f.title for f in result.findings]


@pytest.mark.parametrize("line,title,severity", [
    ('API_KEY = "abc123"', "Hardcoded secret or credential", "critical"),
    ('cursor.execute(f"SELECT * FROM users WHERE id={uid}")', "Possible SQL injection via f-string", "critical"),
    ("result = eval(user_input)", "Use of eval() is unsafe", "high"),
    ("subprocess.run(cmd, shell=True)", "shell=True in subprocess is vulnerable to command injection", "high"),
    ("requests.get(url, verify=False)", "TLS certificate verification disabled", "high"),
    ("data = pickle.loads(blob)", "pickle.load() can execute arbitrary code on untrusted data", "medium"),
])
def test_python_patterns(tmp_path, line, title, severity):
    result = _scan(tmp_path, {"app.py": f"import os\n{line}\n"})
    matches = [f for f in result.findings if f.title == title]
    assert len(matches) == 1
    assert matches[0].severity.value == severity
    assert matches[0].file == "app.py"
    assert matches[0].description.startswith("Line 2:")


def test_clean_project(tmp_path):
    result = _scan(tmp_path, {"app.py": "import os\n\nKEY = os.environ['KEY']\n"})
    assert result.success is True
    assert result.findings == []
    assert "No findings." in result.report


def test_hidden_and_vendor_dirs_skipped(tmp_path):
    result = _scan(tmp_path, {
        ".buildgate/old.py": "eval(x)\n",
        "venv/lib/site.py": "eval(x)\n",
        "src/ok.py": "x = 1\n",
    })
    assert result.findings == []


def test_template_patterns(tmp_path):
    result = _scan(tmp_path, {"templates/index.html": "<p>{{ comment | safe }}</p>\n"})
    assert _titles(result) == ["Jinja2 '| safe' disables auto-escaping (XSS risk)"]


def test_csrf_missing(tmp_path):
    result = _scan(tmp_path, {"templates/form.html": '<form method="post"><input name="q"></form>\n'})
    assert "POST form found with no CSRF protection" in _titles(result)


def test_csrf_present(tmp_path):
    html = '<form method="post">{{ form.hidden_tag() }}<input name="q"></form>\n'
    result = _scan(tmp_path, {"templates/form.html": html})
    assert result.findings == []


def test_scanner_leaves_blocking_to_coordinator(tmp_path):
    result = _scan(tmp_path, {"app.py": 'password = "hunter2"\n'})
    assert result.blocking_issues == []
    assert result.findings[0].severity.is_blocking


def test_findings_survive_verification(tmp_path):
    result = _scan(tmp_path, {"app.py": "import os\nos.system(cmd)\n"})
    verification = verify_findings(str(tmp_path), result.findings)
    assert len(verification.verified) == len(result.findings) == 1


def test_ids_stable_between_scans(tmp_path):
    first = _scan(tmp_path, {"app.py": "eval(x)\n"})
    second = SecurityScanner()(_context(tmp_path))
    assert [f.key for f in first.findings] == [f.key for f in second.findings]
