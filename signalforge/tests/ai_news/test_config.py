import pytest
from pydantic import ValidationError

from signalforge.ai_news.config import AINewsConfig, QuietHours
from signalforge.ai_news.store import SettingsRepository, SignalDatabase


def test_settings_repository_initialises_defaults(tmp_path):
    db = SignalDatabase(tmp_path / "signals.db")
    repo = SettingsRepository(db)
    config = repo.load()

    assert isinstance(config, AINewsConfig)
    assert config.max_items_per_run == 15
    assert config.schedule.enabled is False
    assert repo.export_raw()[SettingsRepository.SETTINGS_KEY]["schedule"]["interval_hours"] == 8


def test_settings_repository_saves_and_reloads(tmp_path):
    db = SignalDatabase(tmp_path / "signals.db")
    repo = SettingsRepository(db)
    config = repo.load()
    config.sources.blog_feeds = ["https://lab.example/rss"]
    repo.save(config)

    reloaded = repo.load()
    assert reloaded.sources.blog_feeds == ["https://lab.example/rss"]


def test_apply_patch_merges_nested_fields(tmp_path):
    repo = SettingsRepository(SignalDatabase(tmp_path / "signals.db"))

    patched = repo.apply_patch({"schedule": {"quiet_hours": {"start": 22}}})

    assert patched.schedule.quiet_hours.start == 22
    assert patched.schedule.quiet_hours.end == 6
    assert repo.load().schedule.quiet_hours.start == 22


def test_apply_patch_rejects_invalid_values(tmp_path):
    repo = SettingsRepository(SignalDatabase(tmp_path / "signals.db"))

    with pytest.raises(ValidationError):
        repo.apply_patch({"sources": {"limit_per_source": 0}})
    assert repo.load().sources.limit_per_source == 30


def test_from_env_overrides_named_options():
    config = AINewsConfig.from_env(
        {
            "AI_NEWS_LIMIT_PER_SOURCE": "10",
            "AI_NEWS_MAX_ITEMS": "5",
            "AI_NEWS_INTERVAL_HOURS": "4",
            "AI_NEWS_MAX_RUNS_PER_DAY": "6",
            "AI_NEWS_RUN_ON_WEEKENDS": "false",
            "AI_NEWS_QUIET_HOURS_START": "22",
            "AI_NEWS_QUIET_HOURS_END": "7",
            "UNRELATED": "x",
        }
    )

    assert config.sources.limit_per_source == 10
    assert config.max_items_per_run == 5
    assert config.schedule.interval_hours == 4
    assert config.schedule.max_runs_per_day == 6
    assert config.schedule.run_on_weekends is False
    assert config.schedule.quiet_hours == QuietHours(start=22, end=7)


def test_from_env_rejects_garbage():
    with pytest.raises(ValidationError):
        AINewsConfig.from_env({"AI_NEWS_INTERVAL_HOURS": "soon"})
    with pytest.raises(ValidationError):
        AINewsConfig.from_env({"AI_NEWS_RUN_ON_WEEKENDS": "maybe"})


def test_env_defaults_seed_the_repository(tmp_path):
    defaults = AINewsConfig.from_env({"AI_NEWS_MAX_ITEMS": "3"})
    repo = SettingsRepository(SignalDatabase(tmp_path / "signals.db"), defaults=defaults)

    assert repo.load().max_items_per_run == 3
    assert repo.default_config().max_items_per_run == 3


@pytest.mark.parametrize(
    "start,end,hour,expected",
    [
        (22, 6, 23, True),
        (22, 6, 2, True),
        (22, 6, 10, False),
        (1, 6, 1, True),
        (1, 6, 6, False),
        (5, 5, 5, False),
    ],
)
def test_quiet_hours_contains(start, end, hour, expected):
    assert QuietHours(start=start, end=end).contains(hour) is expected
