from __future__ import annotations

import hubcache


def test_package_exports() -> None:
    assert hubcache.__version__ == "0.1.0"
    for name in hubcache.__all__:
        assert hasattr(hubcache, name), name


def test_repr_of_downloader_config_is_safe(tmp_path) -> None:
    downloader = hubcache.HubDownloader(
        config=hubcache.HubCacheConfig(hf_home=tmp_path, token="hf_secret")
    )
    assert downloader.cache_dir == tmp_path / "hub"
    assert "hf_secret" not in repr(downloader.config)
