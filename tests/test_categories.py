from __future__ import annotations

from app.models.results import FusedResultSet, ImageResult, NewsResult, WebResult
from app.research_core.rank.categories import UNLABELED, build_category_map, label_results, label_url


def test_github_rule_matches_host_and_subdomains():
    rules = build_category_map(["github"])

    assert label_url("https://github.com/org/repo", rules) == "github"
    assert label_url("https://gist.github.com/someone/abc", rules) == "github"
    assert label_url("https://notgithub.com/org/repo", rules) == UNLABELED


def test_pdf_rule_matches_path_suffix():
    rules = build_category_map(["pdf"])

    assert label_url("https://example.com/papers/attention.pdf", rules) == "pdf"
    assert label_url("https://example.com/file.PDF?download=1", rules) == "pdf"
    assert label_url("https://example.com/pdf-tools", rules) == UNLABELED


def test_first_matching_rule_wins():
    rules = build_category_map(["research", "pdf"])

    assert label_url("https://arxiv.org/pdf/1706.03762.pdf", rules) == "research"


def test_no_rules_labels_everything_unlabeled():
    assert label_url("https://github.com/org/repo", []) == UNLABELED
    assert build_category_map([]) == []


def test_duplicate_and_unknown_categories_are_ignored():
    rules = build_category_map(["github", "GitHub", "unknown"])

    assert len(rules) == 1


def test_label_results_labels_web_and_news_only():
    results = FusedResultSet(
        web=[WebResult(url="https://github.com/a/b", position=1)],
        news=[NewsResult(url="https://news.example/story", position=1)],
        images=[ImageResult(url="https://github.com/a/b/logo.png", position=1)],
    )
    labeled = label_results(results, build_category_map(["github"]))

    assert labeled.web[0].category == "github"
    assert labeled.news[0].category == UNLABELED
    assert labeled.images[0].category is None
    assert results.web[0].category is None
