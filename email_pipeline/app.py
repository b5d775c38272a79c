"""Control plane API - enqueue sheets and manage the pipeline queues"""
import logging
import sys

from flask import Flask, jsonify, request
from flask_cors import CORS

from email_pipeline.config import (
    API_HOST,
    API_PORT,
    DEBUG,
    INGESTOR_BATCH_SIZE,
    SCRAPE_QUEUE_NAME,
)
from email_pipeline.log import setup_logging
from email_pipeline.models import ScrapeTask
from email_pipeline.modules.sheet_ingestor import enqueue_tasks
from email_pipeline.modules.sheets import SinkError
from email_pipeline.services import create_queues, create_store

logger = logging.getLogger(__name__)

CLEANABLE_STATES = ('completed', 'failed')


def create_app(store, sheets=None) -> Flask:
    """Build the Flask app over a queue store. ``sheets`` is only needed to enqueue whole sheets."""
    app = Flask(__name__)
    CORS(app, resources={
        r"/api/*": {
            "origins": "*",
            "methods": ["GET", "POST", "OPTIONS"],
            "allow_headers": ["Content-Type", "Authorization"]
        }
    })

    queues = create_queues(store)

    def get_queue(name):
        queue = queues.get(name)
        if queue is None:
            return None, (jsonify({'error': f'Unknown queue: {name}'}), 404)
        return queue, None

    @app.route('/')
    @app.route('/api/health')
    def health_check():
        """Health check endpoint"""
        health = {'service': 'page-email-pipeline', 'status': 'healthy', 'queues': {}}
        try:
            for name, queue in queues.items():
                health['queues'][name] = queue.get_counts()
        except Exception as e:
            logger.error(f"Health check failed: {e}", exc_info=True)
            health['status'] = 'unhealthy'
            health['error'] = str(e)
            return jsonify(health), 503
        return jsonify(health)

    @app.route('/api/start-queue', methods=['POST'])
    def start_queue():
        """Enqueue a sheet's pending rows, or an explicit list of URLs (rows 2..N+1)"""
        data = request.get_json(silent=True) or {}
        sheet_id = data.get('sheetId')
        if not isinstance(sheet_id, str) or not sheet_id.strip():
            return jsonify({'error': 'sheetId is required'}), 400
        sheet_id = sheet_id.strip()

        urls = data.get('urls')
        if urls is not None:
            if not isinstance(urls, list) or not all(isinstance(u, str) and u.strip() for u in urls):
                return jsonify({'error': 'urls must be a list of non-empty strings'}), 400
            tasks = [
                ScrapeTask(url=url.strip(), row_index=index + 2, destination_id=sheet_id)
                for index, url in enumerate(urls)
            ]
        else:
            if sheets is None:
                return jsonify({'error': 'Google Sheets is not configured, pass urls explicitly'}), 400
            try:
                rows = sheets.get_pending_rows(sheet_id, INGESTOR_BATCH_SIZE)
            except SinkError as e:
                logger.error(f"Failed to read sheet {sheet_id}: {e}")
                return jsonify({'error': str(e)}), 502
            tasks = [ScrapeTask(url=row.url, row_index=row.row_index, destination_id=sheet_id) for row in rows]

        try:
            added = enqueue_tasks(queues[SCRAPE_QUEUE_NAME], tasks)
        except Exception as e:
            logger.error(f"Failed to enqueue tasks for {sheet_id}: {e}", exc_info=True)
            return jsonify({'error': f'Failed to enqueue: {e}'}), 500

        logger.info(f"Enqueued {added} tasks for sheet {sheet_id} ({len(tasks) - added} duplicates)")
        return jsonify({
            'success': True,
            'sheetId': sheet_id,
            'enqueued': added,
            'duplicates': len(tasks) - added,
        })

    @app.route('/api/queues/<name>/stats')
    def queue_stats(name):
        queue, error = get_queue(name)
        if error:
            return error
        stats = queue.get_counts()
        stats['paused'] = queue.is_paused()
        return jsonify(stats)

    @app.route('/api/queues/<name>/pause', methods=['POST'])
    def pause_queue(name):
        queue, error = get_queue(name)
        if error:
            return error
        queue.pause()
        return jsonify({'success': True, 'queue': name, 'paused': True})

    @app.route('/api/queues/<name>/resume', methods=['POST'])
    def resume_queue(name):
        queue, error = get_queue(name)
        if error:
            return error
        queue.resume()
        return jsonify({'success': True, 'queue': name, 'paused': False})

    @app.route('/api/queues/<name>/drain', methods=['POST'])
    def drain_queue(name):
        queue, error = get_queue(name)
        if error:
            return error
        removed = queue.drain()
        return jsonify({'success': True, 'queue': name, 'removed': removed})

    @app.route('/api/queues/<name>/clean', methods=['POST'])
    def clean_queue(name):
        queue, error = get_queue(name)
        if error:
            return error

        data = request.get_json(silent=True) or {}
        status = data.get('status', 'completed')
        grace = data.get('graceSeconds', 0)
        if status not in CLEANABLE_STATES:
            return jsonify({'error': f"status must be one of {', '.join(CLEANABLE_STATES)}"}), 400
        if isinstance(grace, bool) or not isinstance(grace, int) or grace < 0:
            return jsonify({'error': 'graceSeconds must be a non-negative integer'}), 400

        removed = queue.clean(grace, status)
        return jsonify({'success': True, 'queue': name, 'status': status, 'removed': removed})

    @app.route('/api/queues/<name>/obliterate', methods=['POST'])
    def obliterate_queue(name):
        queue, error = get_queue(name)
        if error:
            return error
        removed = queue.obliterate()
        return jsonify({'success': True, 'queue': name, 'removed': removed})

    return app


def main():
    """Main entry point for the control plane"""
    from email_pipeline.syncer import build_sheets_client

    setup_logging('api')
    try:
        store = create_store()
    except Exception as e:
        logger.error(f"Failed to start API: {e}", exc_info=True)
        sys.exit(1)

    app = create_app(store, sheets=build_sheets_client())
    logger.info(f"Starting control plane on {API_HOST}:{API_PORT}")
    app.run(host=API_HOST, port=API_PORT, debug=DEBUG)


if __name__ == '__main__':
    main()
