# -*- coding: utf-8 -*-
"""
resolver.py
Stream-host page -> manifest URL.

    FETCHED -> SCANNED_FOR_DIRECT_URL -> resolved
    FETCHED -> SCANNED_FOR_DIRECT_URL -> CANDIDATE_SELECTED -> SANDBOXED -> resolved | failed

The page script is never evaluated in this process: the selected block is
rewritten, wrapped in a shim of the browser globals it probes (with the node
globals that reach the filesystem or network removed), and handed to
``sandbox.run_sandboxed``. Only the printed output is inspected afterwards.
"""
from __future__ import annotations

import json
import logging
import re
import urllib.parse
from typing import Callable, List, Optional, Sequence

from . import settings
from .errors import NotFoundError, PaheError, ResolutionError
from .fetcher import RemoteFetcher
from .sandbox import run_sandboxed

logger = logging.getLogger(__name__)

# stops at the first char that cannot be part of a URL in markup or JS
MANIFEST_URL_RE = re.compile(r"https?://[^\s'\"<>)]+\.m3u8[^\s'\"<>)]*")
SCRIPT_RE = re.compile(r"<script([^>]*)>([\s\S]*?)</script>", re.IGNORECASE)
SRC_ATTR_RE = re.compile(r"\bsrc\s*=", re.IGNORECASE)
DATA_SRC_RE = re.compile(r'data-src="([^"]+\.m3u8[^"]*)"')

EVAL_MARKER = "eval("
RELEVANCE_MARKERS = ("source", ".m3u8", "Plyr")

DOCUMENT_RE = re.compile(r"\bdocument\b")
DOC_STUB = "DOC_STUB"
PAYLOAD_VAR = "q"
PAYLOAD_DECL_RE = re.compile(r"^(\s*)(?:var|let|const)\s+" + PAYLOAD_VAR + r"\s*=", re.MULTILINE)

SANDBOX_PRELUDE = """\
const __print = console.log.bind(console);
for (const name of ['process', 'fetch', 'WebSocket', 'require', 'module', 'exports', 'Buffer']) {
  try {
    Object.defineProperty(globalThis, name, { value: undefined, writable: false, configurable: false });
  } catch (e) {
    delete globalThis[name];
  }
}
globalThis.window = { location: {} };
globalThis.document = { cookie: '' };
const DOC_STUB = globalThis.document;
Object.defineProperty(globalThis, 'navigator', {
  value: { userAgent: __USER_AGENT__ }, writable: true, configurable: true,
});
const __origEval = globalThis.eval;
globalThis.eval = function (code) {
  __print('[eval] ' + code);
  return __origEval(code);
};
const __payload = function (require, module, exports, process, fetch, __filename, __dirname) {
"""

# __payload is sloppy but its caller is strict, so ``.caller`` stops there
SANDBOX_TRAILER = """
};
(function () {
  'use strict';
  try { __payload(); } catch (e) { __print('[error] ' + e); }
  try {
    if (typeof window.q === 'undefined') { __print('Variable q not found'); }
    else { __print(window.q); }
  } catch (e) { __print('Variable q not found'); }
})();
"""


def find_manifest_url(text: str) -> Optional[str]:
    m = MANIFEST_URL_RE.search(text or "")
    return m.group(0) if m else None


def extract_inline_scripts(html: str) -> List[str]:
    return [body for attrs, body in SCRIPT_RE.findall(html) if not SRC_ATTR_RE.search(attrs)]


def select_script_candidate(scripts: Sequence[str]) -> Optional[str]:
    """Pick the block most likely to hold the packed player setup.

    Order of preference:
      1. the first block containing ``eval(`` and any of RELEVANCE_MARKERS;
      2. the longest block containing ``eval(`` (earliest on equal length);
      3. None.
    Rule 2 is a heuristic: packers emit long payloads, nothing more.
    """
    evaluating = [s for s in scripts if EVAL_MARKER in s]
    for s in evaluating:
        if any(marker in s for marker in RELEVANCE_MARKERS):
            return s
    longest = None
    for s in evaluating:
        if longest is None or len(s) > len(longest):
            longest = s
    return longest


def prepare_script(script: str) -> str:
    """Stub out the DOM and lift the payload variable onto ``window``."""
    script = DOCUMENT_RE.sub(DOC_STUB, script)
    return PAYLOAD_DECL_RE.sub(r"\1window." + PAYLOAD_VAR + " =", script, count=1)


def build_sandbox_program(script: str, user_agent: str) -> str:
    prelude = SANDBOX_PRELUDE.replace("__USER_AGENT__", json.dumps(user_agent))
    return prelude + script + "\n" + SANDBOX_TRAILER


class ScriptResolver:
    def __init__(
        self,
        fetcher: RemoteFetcher,
        runner: Callable[[str], str] = run_sandboxed,
        timeout: float = settings.KWIK_TIMEOUT,
    ):
        self.fetcher = fetcher
        self.runner = runner
        self.timeout = timeout

    def resolve(self, url: str) -> str:
        try:
            return self._resolve(url)
        except PaheError as e:
            raise e.with_context("Failed to resolve stream host page") from e

    def _resolve(self, url: str) -> str:
        user_agent = self.fetcher.identity()
        html = self.fetcher.get_text(url, headers=self.fetcher.headers(user_agent), timeout=self.timeout)

        direct = find_manifest_url(html)
        if direct:
            logger.info("manifest embedded in page %s", url)
            return direct

        script = select_script_candidate(extract_inline_scripts(html))
        if script is None:
            m = DATA_SRC_RE.search(html)
            if m:
                return urllib.parse.urljoin(url, m.group(1))
            raise NotFoundError("No candidate <script> block found to evaluate", url=url)

        logger.info("running %d-char script from %s in sandbox", len(script), url)
        output = self.runner(build_sandbox_program(prepare_script(script), user_agent))
        found = find_manifest_url(output)
        if found:
            return found
        raise ResolutionError.from_output("Could not resolve .m3u8", output)
