import pytest

from app.errors import InvalidRequest, InvalidUrlFormat, NamingExhausted, ObjectStoreFailure
from app.naming import NamingResolver

from conftest import BASE_URL, BUCKET, client_error


def _resolver(gateway, max_attempts: int = 1000, base_url: str = BASE_URL) -> NamingResolver:
    return NamingResolver(gateway, bucket=BUCKET, public_url_base=base_url, max_attempts=max_attempts)


def test_resolve_returns_desired_name_when_free(gateway) -> None:
    assert _resolver(gateway).resolve("f.txt") == "f.txt"


def test_resolve_strips_directories(gateway) -> None:
    assert _resolver(gateway).resolve("some/dir/f.txt") == "f.txt"
    assert _resolver(gateway).resolve("C:\\Users\\me\\f.txt") == "f.txt"


def test_resolve_appends_counter_before_extension(gateway, fake_s3) -> None:
    fake_s3.seed("f.txt")
    fake_s3.seed("f_1.txt")
    assert _resolver(gateway).resolve("f.txt") == "f_2.txt"


def test_resolve_without_extension(gateway, fake_s3) -> None:
    fake_s3.seed("README")
    assert _resolver(gateway).resolve("README") == "README_1"


def test_resolve_is_deterministic_for_same_existing_keys(gateway, fake_s3) -> None:
    fake_s3.seed("a.png")
    resolver = _resolver(gateway)
    assert resolver.resolve("a.png") == resolver.resolve("a.png") == "a_1.png"


def test_resolve_rejects_blank_name(gateway) -> None:
    with pytest.raises(InvalidRequest):
        _resolver(gateway).resolve("   ")


def test_resolve_gives_up_after_max_attempts(gateway, fake_s3) -> None:
    fake_s3.seed("f.txt")
    fake_s3.seed("f_1.txt")
    fake_s3.seed("f_2.txt")
    with pytest.raises(NamingExhausted):
        _resolver(gateway, max_attempts=2).resolve("f.txt")


def test_resolve_propagates_stat_errors(gateway, fake_s3) -> None:
    fake_s3.failures["head_object"] = client_error("AccessDenied", "HeadObject")
    with pytest.raises(ObjectStoreFailure):
        _resolver(gateway).resolve("f.txt")


def test_public_url_normalizes_slashes(gateway) -> None:
    resolver = _resolver(gateway, base_url=" http://cdn.test/ ")
    assert resolver.build_public_url("f.txt") == "http://cdn.test/media/f.txt"
    assert resolver.build_public_url("/f.txt") == "http://cdn.test/media/f.txt"


@pytest.mark.parametrize(
    "key", ["f.txt", "f_1.txt", "nested/key.bin", "no-extension", "report?v=2.pdf", "my file#1.txt", "50%.csv"]
)
def test_extract_object_key_inverts_public_url(gateway, key: str) -> None:
    resolver = _resolver(gateway)
    assert resolver.extract_object_key(resolver.build_public_url(key)) == key


def test_extract_object_key_drops_query_string(gateway) -> None:
    resolver = _resolver(gateway)
    assert resolver.extract_object_key("http://cdn.test/media/f.txt?version=3") == "f.txt"


def test_extract_object_key_base_url_match_is_case_insensitive(gateway) -> None:
    assert _resolver(gateway).extract_object_key("HTTP://CDN.TEST/media/f.txt") == "f.txt"


@pytest.mark.parametrize(
    "url",
    [
        "http://elsewhere.test/media/f.txt",
        "http://cdn.test/other-bucket/f.txt",
        "http://cdn.test/media/",
        "http://cdn.test/mediaf.txt",
    ],
)
def test_extract_object_key_rejects_foreign_urls(gateway, url: str) -> None:
    with pytest.raises(InvalidUrlFormat):
        _resolver(gateway).extract_object_key(url)


def test_public_url_escapes_reserved_characters(gateway) -> None:
    resolver = _resolver(gateway)
    assert resolver.build_public_url("report?v=2.pdf") == "http://cdn.test/media/report%3Fv%3D2.pdf"
    assert resolver.build_public_url("my file#1.txt") == "http://cdn.test/media/my%20file%231.txt"
