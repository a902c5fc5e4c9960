"""Host-document and gate-output patching for the publish workflow.

Every patch targets a fixed marker in either the dashboard's index.html
or the page StatiCrypt generates from it. The markers are textual
contracts with those documents; when one is missing the patch raises
PatchPointNotFoundError naming the patch and PATCHSET_VERSION, so that
drift in StatiCrypt's output is diagnosable instead of silently ignored.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable

from bs4 import BeautifulSoup

from .crypto import DashvaultError

logger = logging.getLogger(__name__)

# Bump when any marker below changes to follow a new StatiCrypt release.
PATCHSET_VERSION = 1

RUNTIME_ATTR = "data-dashvault-runtime"
PASSPHRASE_STORAGE_KEY = "staticrypt_passphrase"

LOAD_DATA_RE = re.compile(
    r"async function loadData\(\) \{[\s\S]*?showLoading\(false\);\s*\}\s*\}"
)
HEAD_CLOSE_RE = re.compile(r"</head\s*>", re.IGNORECASE)
RUNTIME_SCRIPT_RE = re.compile(
    "<script " + RUNTIME_ATTR + r"=\"true\">[\s\S]*?</script>\n?"
)
TITLE_MARKER = '<p class="staticrypt-title">'
REMEMBER_MARKER = "if (isRememberEnabled && isRememberChecked) {"
REMEMBER_REPLACEMENT = (
    "if (isRememberEnabled) { // Always store password for data decryption"
)


class PatchPointNotFoundError(DashvaultError):
    """A patch marker is missing from the document being patched."""

    def __init__(self, patch: str, marker: str):
        self.patch = patch
        self.marker = marker
        super().__init__(
            f"Patch point not found for '{patch}' (patch set v{PATCHSET_VERSION}): "
            f"{marker}"
        )


@dataclass(frozen=True)
class PatchRule:
    """A single textual substitution that must match exactly once."""

    name: str
    pattern: str | re.Pattern
    replacement: str | Callable[[str], str]

    def apply(self, text: str) -> str:
        """Apply the rule to text.

        Raises:
            PatchPointNotFoundError: If the marker is not present.
        """
        if isinstance(self.pattern, re.Pattern):
            match = self.pattern.search(text)
            if match is None:
                raise PatchPointNotFoundError(self.name, self.pattern.pattern)
            matched = match.group(0)
            start, end = match.span()
        else:
            start = text.find(self.pattern)
            if start < 0:
                raise PatchPointNotFoundError(self.name, self.pattern)
            matched = self.pattern
            end = start + len(matched)

        if callable(self.replacement):
            new = self.replacement(matched)
        else:
            new = self.replacement
        logger.debug("Applied patch %s", self.name)
        return text[:start] + new + text[end:]


def _js_string(s: str) -> str:
    """Escape a string for JavaScript."""
    return (
        '"'
        + s.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("</", "<\\/")
        + '"'
    )


def _html_attr(s: str) -> str:
    return (
        s.replace("&", "&amp;")
        .replace('"', "&quot;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
    )


def get_crypto_engine_js(salt: str) -> str:
    """Generate the client-side decrypt routine with the embedded salt."""
    return f"""
    // Salt for StatiCrypt decryption
    window.STATICRYPT_SALT = {_js_string(salt)};

    // StatiCrypt-compatible crypto engine for decrypting data
    window.cryptoEngine = (function() {{
      const IV_BITS = 16 * 8;
      const HEX_BITS = 4;
      const ENCRYPTION_ALGO = 'AES-CBC';

      const HexEncoder = {{
        parse: function(hexString) {{
          if (hexString.length % 2 !== 0) throw 'Invalid hexString';
          const arrayBuffer = new Uint8Array(hexString.length / 2);
          for (let i = 0; i < hexString.length; i += 2) {{
            const byteValue = parseInt(hexString.substring(i, i + 2), 16);
            if (isNaN(byteValue)) throw 'Invalid hexString';
            arrayBuffer[i / 2] = byteValue;
          }}
          return arrayBuffer;
        }}
      }};

      async function decrypt(encryptedMsg, hashedPassword) {{
        encryptedMsg = encryptedMsg.trim();
        const ivLength = IV_BITS / HEX_BITS;
        const iv = HexEncoder.parse(encryptedMsg.substring(0, ivLength));
        const encrypted = encryptedMsg.substring(ivLength);
        const key = await crypto.subtle.importKey(
          'raw', HexEncoder.parse(hashedPassword), ENCRYPTION_ALGO, false, ['decrypt']
        );
        const outBuffer = await crypto.subtle.decrypt(
          {{ name: ENCRYPTION_ALGO, iv }}, key, HexEncoder.parse(encrypted)
        );
        return new TextDecoder().decode(new Uint8Array(outBuffer));
      }}

      return {{ decrypt }};
    }})();
  """


def get_load_data_js(data_url: str) -> str:
    """Generate the loadData() replacement that decrypts the artifact."""
    return f"""async function loadData() {{
      showLoading(true);
      try {{
        // Hashed password stored by StatiCrypt on unlock
        const hashedPassword = localStorage.getItem('{PASSPHRASE_STORAGE_KEY}');
        if (!hashedPassword) {{
          console.error('No password found in localStorage');
          showNoData(true);
          return;
        }}

        const response = await fetch({_js_string(data_url)});
        if (!response.ok) throw new Error('Failed to load encrypted data');
        const encryptedData = await response.text();

        const decryptedJson = await window.cryptoEngine.decrypt(encryptedData, hashedPassword);
        statsData = JSON.parse(decryptedJson);

        if (!statsData.years || Object.keys(statsData.years).length === 0) {{
          showNoData(true);
          return;
        }}

        showNoData(false);
        populatePomTypeFilter();
        updateSummaryCards();
        createAllCharts();
        updateAllTables();
        updateDataTable();

        if (statsData.lastUpdated) {{
          document.getElementById('lastUpdated').textContent =
            'Last updated: ' + new Date(statsData.lastUpdated).toLocaleString();
        }}
      }} catch (error) {{
        console.error('Error loading data:', error);
        showNoData(true);
      }} finally {{
        showLoading(false);
      }}
    }}"""


def _runtime_script(salt: str) -> str:
    soup = BeautifulSoup("", "html.parser")
    script_tag = soup.new_tag("script")
    script_tag[RUNTIME_ATTR] = "true"
    script_tag.string = get_crypto_engine_js(salt)
    return str(script_tag)


def inject_crypto_engine(html: str, salt: str) -> str:
    """Embed the salt and decrypt routine just before </head>.

    The script is inserted as text; the rest of the document is left
    byte for byte as it was. A runtime injected by an earlier run is
    replaced, not duplicated.

    Raises:
        PatchPointNotFoundError: If the document has no </head>.
    """
    html = RUNTIME_SCRIPT_RE.sub("", html)
    script = _runtime_script(salt)
    rule = PatchRule(
        name="inject_crypto_engine",
        pattern=HEAD_CLOSE_RE,
        replacement=lambda matched: script + "\n" + matched,
    )
    return rule.apply(html)


def replace_load_data(html: str, data_url: str) -> str:
    """Replace the dashboard's loadData() with the decrypting version.

    Raises:
        PatchPointNotFoundError: If no matching loadData() is found.
    """
    rule = PatchRule(
        name="replace_load_data",
        pattern=LOAD_DATA_RE,
        replacement=lambda _matched: get_load_data_js(data_url),
    )
    return rule.apply(html)


def add_branding(html: str, logo_src: str, logo_alt: str = "") -> str:
    """Insert a logo image before the gate page's title paragraph.

    Raises:
        PatchPointNotFoundError: If the title marker is missing.
    """
    logo_html = (
        f'<img src="{_html_attr(logo_src)}" alt="{_html_attr(logo_alt)}" '
        'style="max-width: 200px; margin-bottom: 20px;" />'
    )
    rule = PatchRule(
        name="add_branding",
        pattern=TITLE_MARKER,
        replacement=logo_html + TITLE_MARKER,
    )
    return rule.apply(html)


def force_remember(html: str) -> str:
    """Make the gate page always persist the hashed password.

    The dashboard's loadData() reads the hashed password from
    localStorage, so it must be stored even when "Remember me" is
    unchecked.

    Raises:
        PatchPointNotFoundError: If the remember-me condition is missing.
    """
    rule = PatchRule(
        name="force_remember",
        pattern=REMEMBER_MARKER,
        replacement=REMEMBER_REPLACEMENT,
    )
    return rule.apply(html)


def patch_host_document(html: str, salt: str, data_url: str) -> str:
    """Apply all host-document patches before running StatiCrypt."""
    html = inject_crypto_engine(html, salt)
    return replace_load_data(html, data_url)


def postprocess_gate_output(
    html: str,
    logo_src: str | None = None,
    logo_alt: str = "",
) -> str:
    """Apply all patches to the page StatiCrypt generated."""
    if logo_src:
        html = add_branding(html, logo_src, logo_alt)
    return force_remember(html)
