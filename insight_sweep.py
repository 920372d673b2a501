"""
Cron Job: Refresh Industry Insights
Runs weekly (Sunday 00:00) to regenerate every stored industry's insights
"""
import logging

logger = logging.getLogger(__name__)


def refresh_all_insights(refresher) -> dict:
    """Regenerate insights for every stored industry key.

    One industry failing never stops the sweep; it keeps its old record.
    """
    industries = refresher.store.list_keys()
    refreshed = 0
    failed = 0

    for industry in industries:
        try:
            refresher.refresh(industry)
            refreshed += 1
            logger.info('Refreshed insights for %s', industry)
        except Exception as e:
            failed += 1
            logger.error('Error refreshing insights for %s: %s', industry, e)
            continue

    logger.info('Insight sweep complete: %d refreshed, %d failed', refreshed, failed)
    return {'refreshed': refreshed, 'failed': failed}


if __name__ == '__main__':
    from app import create_app

    app = create_app()
    with app.app_context():
        refresh_all_insights(app.extensions['insight_refresher'])
