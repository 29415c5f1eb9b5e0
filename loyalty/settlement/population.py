# ==============================================================================
# loyalty/settlement/population.py
# ------------------------------------------------------------------------------
# Collaborators the engine reads its population from: the reference-data
# store (governorates, districts, segments) and the user export service.
# ==============================================================================

import os
import logging
from loyalty import db
from loyalty.models import (MethodType, Governorate, District, Segment, Supplier,
                            Vertical, UserType, ProductType, Region)
from .breakdown import EntityRef
from .errors import UpstreamUnavailable
from .validator import read_user_export, validate_user_export

_REFERENCE_MODELS = {
    'supplier': Supplier,
    'vertical': Vertical,
    'user_type': UserType,
    'product_type': ProductType,
    'region': Region,
    MethodType.GOVERNORATE: Governorate,
    MethodType.DISTRICT: District,
    MethodType.SEGMENT: Segment,
}


class ReferenceData:
    """Read-only {id, name} lookups over reference tables."""

    def lookup(self, kind, entity_id):
        model = _REFERENCE_MODELS[kind]
        record = db.session.get(model, entity_id) if entity_id is not None else None
        if record is None:
            return EntityRef(entity_id)
        return EntityRef(record.id, record.name)

    def entities(self, method, supplier_id=None, vertical_id=None):
        """
        The default population of an entity method, ordered by id. Segments
        are limited to the supplier's and vertical's own (or unscoped) segments.
        """
        model = _REFERENCE_MODELS[MethodType(method)]
        query = model.query
        if model is Segment:
            if supplier_id is not None:
                query = query.filter((Segment.supplier_id == supplier_id) | Segment.supplier_id.is_(None))
            if vertical_id is not None:
                query = query.filter((Segment.vertical_id == vertical_id) | Segment.vertical_id.is_(None))
        return [EntityRef(record.id, record.name) for record in query.order_by(model.id).all()]

    def resolve_population(self, method, members):
        """Attaches names to an explicit population of ids, keeping its order."""
        refs = []
        for member in members:
            if isinstance(member, EntityRef):
                refs.append(member if member.name else self.lookup(MethodType(method), member.id))
            else:
                refs.append(self.lookup(MethodType(method), member))
        return refs


class UserExportSource:
    """
    Interface of the user export service. `export_link` names the exported
    user list for a run (None if it does not exist yet); `load_users` returns
    the list as a DataFrame with the columns in schema.EXPECTED_USER_EXPORT.
    Both raise UpstreamUnavailable when the service cannot deliver.
    """

    def export_link(self, run):
        raise NotImplementedError

    def load_users(self, link, method=None):
        raise NotImplementedError


class FileUserExportSource(UserExportSource):
    """
    Reads exports dropped into a folder, named
    `<supplier>_<vertical>_<user type or all>_<year>_<month>.(csv|xlsx)`.
    """

    def __init__(self, folder, extensions=('.csv', '.xlsx')):
        self.folder = folder
        self.extensions = tuple(extensions)

    @staticmethod
    def basename(run):
        user_type = run.user_type_id if run.user_type_id is not None else 'all'
        return f"{run.supplier_id}_{run.vertical_id}_{user_type}_{run.year}_{run.month:02d}"

    def export_link(self, run):
        if not os.path.isdir(self.folder):
            raise UpstreamUnavailable(f"Export folder '{self.folder}' does not exist")
        for extension in self.extensions:
            path = os.path.join(self.folder, self.basename(run) + extension)
            if os.path.exists(path):
                return path
        logging.warning(f"No user export found for run {run.id} ({self.basename(run)}).")
        return None

    def load_users(self, link, method=None):
        if not link or not os.path.exists(link):
            raise UpstreamUnavailable(f"User export '{link}' is not available")
        try:
            df = read_user_export(link)
        except Exception as e:
            raise UpstreamUnavailable(f"User export '{link}' could not be read: {e}") from e

        users, errors = validate_user_export(df, method)
        if errors:
            for error in errors:
                logging.error(f"  - {error}")
            raise UpstreamUnavailable(f"User export '{link}' failed validation ({len(errors)} error(s))")
        logging.info(f"Loaded {len(users)} user(s) from '{link}'.")
        return users
