"""
Integration tests for the `localize_site` orchestrator.

A small static site is laid out in a temporary directory and localized end to
end with a real TranslationClient whose HTTP traffic goes to an in-process
httpx.MockTransport instead of a translation service.
"""
import json
import os
import shutil
import tempfile
import unittest
from unittest.mock import AsyncMock, patch

import httpx

import site_localizer.localize_site
from site_localizer.app_config import AppConfig
from site_localizer.localize_site import (
    FAILURE_REPORT_NAME,
    FileKind,
    RunSummary,
    build_translation_client,
    discover_files,
    dispatch_kind,
    main,
    run,
    run_localization,
    write_failure_report
)
from site_localizer.translation_cache import TranslationCache
from site_localizer.translation_client import TranslationClient

SITE_FILES = {
    "index.html": '<!DOCTYPE html>\n<html><body><h1>Welcome</h1>'
                  '<img src="logo.png" alt="Hotel logo"><button>Book Now</button></body></html>\n',
    "rooms/suite.html": '<p title="Book Now">Book Now</p>\n',
    "js/app.js": 'import { rooms } from "./rooms.js";\nconst label = `Book Now`;\nalert("Welcome");\n',
    "js/broken.js": 'function (\n  "Hello"\n',
    "css/site.css": 'body { content: "Welcome"; }\n',
    "node_modules/lib/index.js": 'module.exports = "Welcome";\n',
    "notes.txt": "Welcome\n",
}


class LocalizeSiteTestBase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.project_root = tempfile.mkdtemp(prefix='site_localizer_site_')
        for relative_path, content in SITE_FILES.items():
            path = os.path.join(self.project_root, relative_path)
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, 'w', encoding='utf-8', newline='') as f:
                f.write(content)

        self.config = AppConfig(
            project_root=self.project_root,
            output_dir=os.path.join(self.project_root, 'dist'),
            cache_file=os.path.join(self.project_root, '.translation-cache.json'),
            api_url="http://translate.test/translate",
            api_key="",
            source_language="en",
            target_languages=["lv", "ru"],
            request_timeout=5.0,
            request_delay=0,
            max_requests_per_minute=0,
            file_patterns=['**/*.html', '**/*.js', '**/*.css'],
            log_file_path=os.path.join(self.project_root, 'logs', 'localization.log')
        )

        self.requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            payload = json.loads(request.content)
            self.requests.append((payload['q'], payload['target']))
            return httpx.Response(200, json={"translatedText": f"{payload['target'].upper()}:{payload['q']}"})

        self.http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

    async def asyncTearDown(self):
        await self.http_client.aclose()

    def tearDown(self):
        shutil.rmtree(self.project_root, ignore_errors=True)

    def _client(self):
        cache = TranslationCache(self.config.cache_file)
        cache.load()
        return TranslationClient(cache, api_url=self.config.api_url, delay=0, http_client=self.http_client)

    def _snapshot_output(self):
        """Map every file under the output directory to its bytes."""
        tree = {}
        for dir_path, _, file_names in os.walk(self.config.output_dir):
            for file_name in file_names:
                path = os.path.join(dir_path, file_name)
                with open(path, 'rb') as f:
                    tree[os.path.relpath(path, self.config.output_dir)] = f.read()
        return tree

    def _read(self, *parts, mode='r'):
        path = os.path.join(self.config.output_dir, *parts)
        if 'b' in mode:
            with open(path, mode) as f:
                return f.read()
        with open(path, mode, encoding='utf-8', newline='') as f:
            return f.read()


class TestRunLocalization(LocalizeSiteTestBase):

    async def test_language_trees_are_produced(self):
        summary = await run_localization(self.config, self._client())

        self.assertEqual(summary.files_found, 5)
        index_lv = self._read('lv', 'index.html')
        self.assertIn('<h1>LV:Welcome</h1>', index_lv)
        self.assertIn('alt="LV:Hotel logo"', index_lv)
        self.assertIn('<button>LV:Book Now</button>', index_lv)
        self.assertEqual(self._read('ru', 'rooms', 'suite.html'), '<p title="RU:Book Now">RU:Book Now</p>\n')
        self.assertEqual(
            self._read('ru', 'js', 'app.js'),
            'import { rooms } from "./rooms.js";\nconst label = "RU:Book Now";\nalert("RU:Welcome");\n'
        )

        stats = summary.languages['lv']
        self.assertEqual((stats.markup, stats.scripts, stats.parse_fallbacks, stats.copied, stats.failed),
                         (2, 1, 1, 1, 0))

    async def test_each_unique_string_is_requested_once_per_language(self):
        summary = await run_localization(self.config, self._client())

        self.assertEqual(len(self.requests), len(set(self.requests)))
        self.assertEqual(sorted(q for q, target in self.requests if target == 'lv'),
                         ["Book Now", "Hotel logo", "Welcome"])
        self.assertEqual(summary.remote_calls, 6)

    async def test_unparsable_script_and_other_files_are_copied_byte_identical(self):
        await run_localization(self.config, self._client())

        for language in ('lv', 'ru'):
            for relative_path in ('js/broken.js', 'css/site.css'):
                with open(os.path.join(self.project_root, relative_path), 'rb') as f:
                    self.assertEqual(self._read(language, *relative_path.split('/'), mode='rb'), f.read())

    async def test_ignored_directories_and_unmatched_files_are_skipped(self):
        await run_localization(self.config, self._client())

        self.assertFalse(os.path.exists(os.path.join(self.config.output_dir, 'lv', 'node_modules')))
        self.assertFalse(os.path.exists(os.path.join(self.config.output_dir, 'lv', 'notes.txt')))
        self.assertFalse(os.path.exists(os.path.join(self.config.output_dir, 'lv', 'dist')))

    async def test_second_run_is_served_from_the_cache(self):
        await run_localization(self.config, self._client())
        first_tree = self._snapshot_output()
        self.requests.clear()

        summary = await run_localization(self.config, self._client())

        self.assertEqual(self.requests, [])
        self.assertEqual(summary.remote_calls, 0)
        self.assertEqual(self._snapshot_output(), first_tree)
        self.assertEqual(len(first_tree), 10)

    async def test_stale_output_is_removed(self):
        stale = os.path.join(self.config.output_dir, 'lv', 'old.html')
        os.makedirs(os.path.dirname(stale), exist_ok=True)
        with open(stale, 'w', encoding='utf-8') as f:
            f.write('<p>old</p>')

        await run_localization(self.config, self._client())

        self.assertFalse(os.path.exists(stale))

    async def test_a_failing_file_does_not_stop_the_run(self):
        real_localize_html_file = site_localizer.localize_site.localize_html_file

        async def flaky(file_path, *args, **kwargs):
            if file_path.endswith('suite.html'):
                raise OSError("disk full")
            return await real_localize_html_file(file_path, *args, **kwargs)

        with patch('site_localizer.localize_site.localize_html_file', side_effect=flaky):
            summary = await run_localization(self.config, self._client())

        self.assertEqual(summary.languages['lv'].failed, 1)
        self.assertEqual(summary.failed_files, {
            os.path.join('rooms', 'suite.html'): ["lv: disk full", "ru: disk full"]
        })
        self.assertTrue(os.path.exists(os.path.join(self.config.output_dir, 'ru', 'index.html')))
        self.assertFalse(os.path.exists(os.path.join(self.config.output_dir, 'ru', 'rooms', 'suite.html')))

    async def test_no_matching_files(self):
        self.config.file_patterns = ['**/*.vue']

        summary = await run_localization(self.config, self._client())

        self.assertEqual(summary.files_found, 0)
        self.assertEqual(summary.languages, {})
        self.assertFalse(os.path.exists(self.config.output_dir))

    async def test_dry_run_translates_but_writes_nothing(self):
        self.config.dry_run = True

        summary = await run_localization(self.config, self._client())

        self.assertFalse(os.path.exists(self.config.output_dir))
        self.assertEqual(summary.languages['ru'].markup, 2)
        self.assertTrue(self.requests)


class TestMain(LocalizeSiteTestBase):

    async def test_main_runs_end_to_end_and_writes_no_report_on_success(self):
        with patch('site_localizer.localize_site.load_app_config', return_value=self.config), \
                patch('site_localizer.localize_site.build_translation_client', return_value=self._client()):
            summary = await main()

        self.assertEqual(summary.files_found, 5)
        self.assertTrue(os.path.exists(os.path.join(self.config.output_dir, 'lv', 'index.html')))
        with open(self.config.cache_file, 'r', encoding='utf-8') as f:
            self.assertEqual(json.load(f)["lv::Welcome"], "LV:Welcome")
        report_path = os.path.join(os.path.dirname(self.config.log_file_path), FAILURE_REPORT_NAME)
        self.assertFalse(os.path.exists(report_path))


class TestFailureReport(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp(prefix='site_localizer_report_')
        self.report_path = os.path.join(self.temp_dir, 'logs', FAILURE_REPORT_NAME)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_report_lists_failed_files(self):
        summary = RunSummary(failed_files={"index.html": ["lv: boom"]})

        write_failure_report(summary, self.report_path)

        with open(self.report_path, 'r', encoding='utf-8') as f:
            content = f.read()
        self.assertIn("### `index.html`", content)
        self.assertIn("- lv: boom", content)

    def test_clean_run_removes_stale_report(self):
        write_failure_report(RunSummary(failed_files={"a.js": ["ru: boom"]}), self.report_path)

        write_failure_report(RunSummary(), self.report_path)

        self.assertFalse(os.path.exists(self.report_path))


class TestDiscovery(unittest.TestCase):

    def setUp(self):
        self.root = tempfile.mkdtemp(prefix='site_localizer_discover_')
        for relative_path in ('a.html', 'sub/b.JS', 'sub/c.js', '.git/d.js', 'dist/lv/a.html', 'e.mjs'):
            path = os.path.join(self.root, relative_path)
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, 'w', encoding='utf-8') as f:
                f.write('')

    def tearDown(self):
        shutil.rmtree(self.root, ignore_errors=True)

    def test_patterns_ignores_and_exclusions(self):
        found = discover_files(self.root, ['**/*.html', '**/*.js'], ['.git'],
                               excluded_paths=[os.path.join(self.root, 'dist')])

        self.assertEqual(found, [os.path.join(self.root, 'a.html'), os.path.join(self.root, 'sub', 'c.js')])

    def test_overlapping_patterns_do_not_duplicate(self):
        found = discover_files(self.root, ['**/*.html', '*.html'], [])

        self.assertEqual(found.count(os.path.join(self.root, 'a.html')), 1)

    def test_dispatch_kind(self):
        self.assertIs(dispatch_kind('index.HTML'), FileKind.MARKUP)
        self.assertIs(dispatch_kind('page.htm'), FileKind.MARKUP)
        self.assertIs(dispatch_kind('app.js'), FileKind.SCRIPT)
        self.assertIs(dispatch_kind('App.tsx'), FileKind.SCRIPT)
        self.assertIs(dispatch_kind('site.css'), FileKind.COPY)


class TestBuildTranslationClient(LocalizeSiteTestBase):

    async def test_settings_are_passed_through(self):
        self.config.api_key = "secret"
        client = build_translation_client(self.config, TranslationCache(self.config.cache_file))

        self.assertEqual(client.api_url, self.config.api_url)
        self.assertEqual(client.api_key, "secret")
        self.assertEqual(client.timeout, 5.0)
        self.assertIsNone(client.rate_limiter)

    async def test_rate_limiter_is_created_when_configured(self):
        self.config.max_requests_per_minute = 30
        client = build_translation_client(self.config, TranslationCache(self.config.cache_file))

        self.assertIsNotNone(client.rate_limiter)
        self.assertEqual(client.rate_limiter.max_rate, 30)


class TestRunEntryPoint(unittest.TestCase):

    def test_unexpected_error_is_logged_not_raised(self):
        with patch('site_localizer.localize_site.main', new=AsyncMock(side_effect=RuntimeError("boom"))):
            with self.assertLogs('site_localizer.localize_site', level='ERROR') as captured:
                run()

        self.assertIn("boom", captured.output[0])


if __name__ == '__main__':
    unittest.main()
