from __future__ import annotations

import json

import httpx
import pytest


def test_parse_profile_accepts_fenced_json():
    from proposalhub.integrations.perplexity import parse_profile

    content = '```json\n{"title": "CTO", "skills": ["Rust"]}\n```'
    assert parse_profile(content) == {"title": "CTO", "skills": ["Rust"]}


def test_parse_profile_falls_back_to_background():
    from proposalhub.integrations.perplexity import parse_profile

    assert parse_profile("Ada is a mathematician.") == {"background": "Ada is a mathematician."}
    assert parse_profile('["not", "an", "object"]') == {"background": '["not", "an", "object"]'}


def test_person_query_includes_linkedin_and_organization():
    from proposalhub.integrations.perplexity import person_query

    q = person_query(
        first_name="Ada", last_name="Lovelace", linkedin="https://linkedin.com/in/ada", organization_name="Acme"
    )
    assert q == "Ada Lovelace (https://linkedin.com/in/ada) at Acme"
    assert person_query(first_name=" ", last_name=None) == ""


def test_search_person_requires_api_key():
    from proposalhub.integrations import perplexity
    from proposalhub.integrations.errors import ProviderUnavailable

    with pytest.raises(ProviderUnavailable):
        perplexity.search_person(first_name="Ada", last_name="Lovelace")


def test_search_person_posts_query_and_parses_answer(monkeypatch):
    from proposalhub.integrations import perplexity

    perplexity.settings.perplexity_api_key = "pplx-test"
    seen: dict = {}

    def _handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        content = '```json\n{"title": "Analyst", "background": "Computing pioneer."}\n```'
        return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})

    monkeypatch.setattr(perplexity, "_http_client", lambda timeout: httpx.Client(transport=httpx.MockTransport(_handler)))

    out = perplexity.search_person(first_name="Ada", last_name="Lovelace", organization_name="Acme")
    assert out == {"title": "Analyst", "background": "Computing pioneer."}
    assert seen["url"] == perplexity.API_URL
    assert seen["body"]["model"] == perplexity.settings.perplexity_model
    assert seen["body"]["messages"][1]["content"] == "Find professional information about Ada Lovelace at Acme"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, json={"error": "boom"}),
        httpx.Response(200, json={"unexpected": True}),
    ],
)
def test_search_person_failures_are_provider_unavailable(monkeypatch, response):
    from proposalhub.integrations import perplexity
    from proposalhub.integrations.errors import ProviderUnavailable

    perplexity.settings.perplexity_api_key = "pplx-test"
    monkeypatch.setattr(
        perplexity, "_http_client", lambda timeout: httpx.Client(transport=httpx.MockTransport(lambda r: response))
    )

    with pytest.raises(ProviderUnavailable):
        perplexity.search_person(first_name="Ada", last_name="Lovelace")


def test_search_person_needs_a_name():
    from proposalhub.integrations import perplexity

    perplexity.settings.perplexity_api_key = "pplx-test"
    with pytest.raises(ValueError):
        perplexity.search_person(first_name="", last_name=None)
