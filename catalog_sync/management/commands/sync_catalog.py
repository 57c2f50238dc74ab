import json

from django.core.management.base import BaseCommand, CommandError

from catalog_sync import upsert
from catalog_sync.filters import FilterError
from catalog_sync.jobs import JobCoordinator
from catalog_sync.listing import get_product_listing
from catalog_sync.models import SyncJobState
from catalog_sync.state import StateStore


def _json_object(raw: str) -> dict:
    try:
        value = json.loads(raw)
    except ValueError as exc:
        raise CommandError(f"Invalid JSON: {exc}")
    if not isinstance(value, dict):
        raise CommandError("Expected a JSON object.")
    return value


class Command(BaseCommand):
    help = "Run catalog sync jobs in the foreground, inspect their state or query the synced catalog."

    def add_arguments(self, parser):
        parser.add_argument('job', nargs='?', help="Job name, e.g. products_full or collection_products:<id>.")
        parser.add_argument('--restart', action='store_true', help="Drop the saved cursor and start from the beginning.")
        parser.add_argument('--pending-collections', action='store_true', help="Sync products of queued collections.")
        parser.add_argument('--resume', action='store_true', help="Resume jobs left in progress.")
        parser.add_argument('--status', action='store_true', help="Print every job state as JSON.")
        parser.add_argument('--schedule', action='store_true', help="Print the trigger interval of every job.")
        parser.add_argument('--enqueue-collection', metavar='JSON', help="Queue a collection payload for a product sync.")
        parser.add_argument('--remove-collection', metavar='ID', help="Remove a collection and prune its handle.")
        parser.add_argument('--mark-unavailable', metavar='ID', help="Soft delete a product.")
        parser.add_argument('--delete-product', metavar='ID', help="Hard delete a product.")
        parser.add_argument('--list-products', metavar='JSON', help="Print a product listing for the given params.")
        parser.add_argument('--facets', metavar='JSON', help="Print filter facets for the given params.")

    def handle(self, *args, **options):
        coordinator = JobCoordinator()

        if options['status']:
            states = [state.as_dict() for state in StateStore().all()]
            return self._print(states)
        if options['schedule']:
            return self._print(coordinator.schedule())
        if options['enqueue_collection']:
            pending = coordinator.enqueue_collection(_json_object(options['enqueue_collection']))
            return self._print({'collection_id': pending.collection_id, 'handle': pending.handle})
        if options['remove_collection']:
            return self._print(coordinator.remove_collection(options['remove_collection']))
        if options['mark_unavailable']:
            return self._print({'removed': upsert.mark_product_unavailable(options['mark_unavailable'])})
        if options['delete_product']:
            return self._print({'removed': upsert.delete_product(options['delete_product'])})
        if options['list_products'] or options['facets']:
            return self._query(options)

        if options['pending_collections']:
            results = coordinator.process_pending_collections()
        elif options['resume']:
            results = coordinator.resume_interrupted()
        elif options['job']:
            try:
                results = [coordinator.run(options['job'], restart=options['restart'])]
            except ValueError as exc:
                raise CommandError(str(exc))
        else:
            raise CommandError("Give a job name or one of the action options, see --help.")

        for result in results:
            self.stdout.write(json.dumps(result.as_dict()))

        failed = [result.name for result in results if result.status == SyncJobState.FAILED]
        if failed:
            raise CommandError(f"Failed jobs: {', '.join(failed)}")
        self.stdout.write(self.style.SUCCESS(f"{len(results)} job run(s) finished."))

    def _query(self, options):
        listing = get_product_listing()
        try:
            if options['list_products']:
                return self._print(listing.list_products(_json_object(options['list_products'])))
            return self._print(listing.facets(_json_object(options['facets'])))
        except FilterError as exc:
            raise CommandError(str(exc))

    def _print(self, data):
        self.stdout.write(json.dumps(data, indent=2, default=str))
