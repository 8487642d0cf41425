import logging
import os
import re
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path


logger = logging.getLogger(__name__)

TEMPLATE_EXTENSIONS = (".png", ".bmp")


class AssetScanner:
    """Indexes a template directory and loads reference images in parallel.

    Both the directory index and decoded templates are cached by mtime, so
    rescanning an unchanged directory costs a stat per file.
    """

    def __init__(self, image_matcher, max_workers=None, extensions=TEMPLATE_EXTENSIONS):
        self.image_matcher = image_matcher
        cpu_count = os.cpu_count() or 1
        self.max_workers = max_workers or min(8, cpu_count + 2)
        self.extensions = tuple(ext.lower() for ext in extensions)
        self._template_cache = {}
        self._index_cache = {}
        self._cache_lock = threading.RLock()

    def scan(self, templates_dir, names=None):
        templates_path = Path(templates_dir)
        if not templates_path.is_dir():
            logger.warning(f"Templates directory not found: {templates_path}")
            return {}

        index = self._index_dir(templates_path)
        wanted = list(names) if names is not None else sorted(set(index.values()), key=lambda p: str(p).lower())

        files = {}
        missing = []
        for name in wanted:
            if isinstance(name, Path):
                files[name.stem] = name
                continue
            path = index.get(name.lower()) or index.get(self._normalize_key(name))
            if path is None:
                missing.append(name)
            else:
                files[name] = path

        if missing:
            logger.warning(f"Missing {len(missing)} templates: {', '.join(sorted(missing))}")

        templates = {}
        if not files:
            return templates

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(files))) as executor:
            futures = {executor.submit(self._load_template, path): name for name, path in files.items()}
            for future in as_completed(futures):
                name = futures[future]
                try:
                    templates[name] = future.result()
                except (OSError, ValueError) as exc:
                    logger.error(f"Failed to load template {name}: {exc}")
                    continue
                logger.info(f"Loaded template: {name}")

        return templates

    def clear_cache(self):
        with self._cache_lock:
            self._template_cache.clear()
            self._index_cache.clear()

    def _normalize_key(self, name):
        return re.sub(r"[^a-z0-9]+", "", name.lower())

    def _index_dir(self, templates_path):
        key = str(templates_path)
        try:
            mtime = templates_path.stat().st_mtime
        except OSError:
            mtime = None

        with self._cache_lock:
            cached = self._index_cache.get(key)
            if cached and cached["mtime"] == mtime:
                return cached["index"]

        index = {}
        for path in sorted(templates_path.rglob("*")):
            if not path.is_file() or path.suffix.lower() not in self.extensions:
                continue
            index.setdefault(path.stem.lower(), path)
            index.setdefault(self._normalize_key(path.stem), path)

        with self._cache_lock:
            self._index_cache[key] = {"mtime": mtime, "index": index}
        return index

    def _load_template(self, path):
        try:
            mtime = path.stat().st_mtime
        except OSError:
            mtime = None

        key = str(path)
        with self._cache_lock:
            cached = self._template_cache.get(key)
            if cached and cached["mtime"] == mtime:
                return cached["data"]

        data = self.image_matcher.load_template(path)
        with self._cache_lock:
            self._template_cache[key] = {"mtime": mtime, "data": data}
        return data
