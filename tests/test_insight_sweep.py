from conftest import insights_json
from insight_sweep import refresh_all_insights


def test_sweep_refreshes_every_stored_industry(app, fake_client, refresher):
    fake_client.queue(insights_json(), insights_json())
    refresher.get_insights('finance')
    refresher.get_insights('healthcare')

    fake_client.queue(insights_json(growthRate=20), insights_json(growthRate=6))
    result = refresh_all_insights(refresher)

    assert result == {'refreshed': 2, 'failed': 0}
    assert refresher.store.find('finance')['growth_rate'] == 20
    assert refresher.store.find('healthcare')['growth_rate'] == 6


def test_one_failure_does_not_stop_the_sweep(app, fake_client, refresher):
    fake_client.queue(insights_json(), insights_json())
    refresher.get_insights('finance')
    refresher.get_insights('healthcare')

    # list_keys() is alphabetical: finance fails, healthcare still refreshes
    fake_client.queue(Exception('API key not valid'), insights_json(growthRate=6))
    result = refresh_all_insights(refresher)

    assert result == {'refreshed': 1, 'failed': 1}
    assert refresher.store.find('finance')['growth_rate'] == 8.2
    assert refresher.store.find('healthcare')['growth_rate'] == 6


def test_empty_store_is_a_no_op(app, fake_client, refresher):
    assert refresh_all_insights(refresher) == {'refreshed': 0, 'failed': 0}
    assert fake_client.calls == []
