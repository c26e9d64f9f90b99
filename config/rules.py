"""Security scan patterns.

Each entry: (pattern_regex, severity, message, suggestion). Severity uses the
finding scale; critical and high findings block sign-off.
"""

import re

SECURITY_PATTERNS = [
    (
        re.compile(r"""(?:password|secret|api_key|token)\s*=\s*["'][^"']+["']""", re.IGNORECASE),
        "critical",
        "Hardcoded secret or credential",
        "Use environment variables: os.environ.get('KEY_NAME')",
    ),
    (
        re.compile(r"""\bSECRET_KEY\s*=\s*["'][^"']+["']""", re.IGNORECASE),
        "critical",
        "Hardcoded SECRET_KEY",
        "Use os.environ.get('SECRET_KEY') or generate at runtime with os.urandom()",
    ),
    (
        re.compile(r"""\beval\s*\("""),
        "high",
        "Use of eval() is unsafe",
        "Replace eval() with ast.literal_eval or json.loads",
    ),
    (
        re.compile(r"""\bexec\s*\("""),
        "high",
        "Use of exec() is unsafe",
        "Avoid exec(); use explicit function calls instead",
    ),
    (
        re.compile(r"""\bshell\s*=\s*True\b"""),
        "high",
        "shell=True in subprocess is vulnerable to command injection",
        "Pass arguments as a list with shell=False",
    ),
    (
        re.compile(r"""\bos\.system\s*\("""),
        "medium",
        "os.system() is vulnerable to shell injection",
        "Use subprocess.run() with a list of arguments instead",
    ),
    (
        re.compile(r"""execute\s*\(\s*f["']"""),
        "critical",
        "Possible SQL injection via f-string",
        "Use parameterized queries instead of f-strings in SQL",
    ),
    (
        re.compile(r"""execute\s*\(\s*["'].*["']\s*(?:%|\.format\s*\()"""),
        "critical",
        "Possible SQL injection via string formatting",
        "Use parameterized queries: cursor.execute('... WHERE id=?', (val,))",
    ),
    (
        re.compile(r"""execute\s*\([^)]*["']\s*\+"""),
        "critical",
        "Possible SQL injection via string concatenation",
        "Use parameterized queries: cursor.execute('... WHERE id=?', (val,))",
    ),
    (
        re.compile(r"""\bpickle\.loads?\s*\("""),
        "medium",
        "pickle.load() can execute arbitrary code on untrusted data",
        "Use json.loads() or validate the input source before unpickling",
    ),
    (
        re.compile(r"""\byaml\.load\s*\((?![^)]*Loader\s*=\s*yaml\.SafeLoader)"""),
        "high",
        "yaml.load() without SafeLoader can construct arbitrary objects",
        "Use yaml.safe_load()",
    ),
    (
        re.compile(r"""\bhashlib\.(md5|sha1)\s*\("""),
        "medium",
        "MD5/SHA1 are broken for security use",
        "Use hashlib.sha256 for integrity, bcrypt/argon2 for passwords",
    ),
    (
        re.compile(r"""\bverify\s*=\s*False\b"""),
        "high",
        "TLS certificate verification disabled",
        "Remove verify=False; pass a CA bundle if a private CA is needed",
    ),
    (
        re.compile(r"""\bdebug\s*=\s*True\b""", re.IGNORECASE),
        "medium",
        "Debug mode enabled",
        "Read debug mode from an environment variable",
    ),
    (
        re.compile(r"""\bopen\s*\(\s*request\.(args|form|values|json|files)""", re.IGNORECASE),
        "high",
        "Path traversal risk: open() called with user-supplied path",
        "Resolve the path and check it stays under the base directory",
    ),
    (
        re.compile(
            r"""(?:logging|logger)\s*\.\s*(?:debug|info|warning|error|critical)\s*\("""
            r""".*\b(?:password|passwd|secret|token|api_key)\b""",
            re.IGNORECASE,
        ),
        "medium",
        "Sensitive field written to logs",
        "Log identifiers only, never credentials",
    ),
]

# Patterns for HTML/Jinja2 templates (.html, .jinja2, .j2)
HTML_SECURITY_PATTERNS = [
    (
        re.compile(r"""\|\s*safe\b"""),
        "high",
        "Jinja2 '| safe' disables auto-escaping (XSS risk)",
        "Remove '| safe' unless the value is trusted server-side content",
    ),
    (
        re.compile(r"""javascript\s*:""", re.IGNORECASE),
        "high",
        "javascript: URI is a common XSS vector",
        "Use event listeners instead of javascript: URIs",
    ),
    (
        re.compile(r"""src\s*=\s*["']http://""", re.IGNORECASE),
        "medium",
        "External resource loaded over plain HTTP",
        "Use HTTPS for all external scripts and stylesheets",
    ),
]
