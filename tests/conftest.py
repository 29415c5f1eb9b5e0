# tests/conftest.py

import pytest
import pandas as pd


@pytest.fixture
def app_with_db():
    """
    Creates a new app instance for each test, sets up an in-memory database,
    and yields the app within an application context.
    """
    from config import TestConfig
    from loyalty import create_app, db
    from loyalty.settlement.engine import SettlementConfig

    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        # Invalidate any cached config singleton from a previous test
        SettlementConfig._instance = None
        yield app  # The tests will run here
        db.session.remove()
        db.drop_all()
        SettlementConfig._instance = None


@pytest.fixture
def reference(app_with_db):
    """Seeds one supplier/vertical/user type plus two governorates, three districts and two segments."""
    from loyalty import db
    from loyalty.models import Supplier, Vertical, UserType, ProductType, Governorate, District, Segment

    supplier = Supplier(name='Nile Paints')
    vertical = Vertical(name='Construction')
    db.session.add_all([supplier, vertical])
    db.session.flush()

    user_type = UserType(name='Painter', vertical_id=vertical.id)
    product_type = ProductType(name='Interior')
    cairo = Governorate(name='Cairo', country='EG')
    giza = Governorate(name='Giza', country='EG')
    db.session.add_all([user_type, product_type, cairo, giza])
    db.session.flush()

    nasr_city = District(name='Nasr City', governorate_id=cairo.id)
    maadi = District(name='Maadi', governorate_id=cairo.id)
    dokki = District(name='Dokki', governorate_id=giza.id)
    gold = Segment(name='Gold', supplier_id=supplier.id, vertical_id=vertical.id)
    silver = Segment(name='Silver', supplier_id=supplier.id, vertical_id=vertical.id)
    db.session.add_all([nasr_city, maadi, dokki, gold, silver])
    db.session.commit()

    return {
        'supplier': supplier, 'vertical': vertical, 'user_type': user_type,
        'product_type': product_type,
        'governorates': [cairo, giza],
        'districts': [nasr_city, maadi, dokki],
        'segments': [gold, silver],
    }


@pytest.fixture
def make_rule(app_with_db):
    """Factory for persisted incentive rules."""
    from loyalty import db
    from loyalty.models import IncentiveRule, RewardStream, SegmentOverride

    def _make_rule(reward_streams=(), overrides=(), **fields):
        rule = IncentiveRule(**fields)
        for action, wheel, wallet in reward_streams:
            rule.reward_streams.append(RewardStream(action=action, wheel=wheel, wallet=wallet))
        for target_type, target_id, value in overrides:
            rule.segmentation.append(SegmentOverride(target_type=target_type, target_id=target_id, value=value))
        db.session.add(rule)
        db.session.commit()
        return rule

    return _make_rule


class FakeUserExport:
    """In-memory stand-in for the user export service."""

    def __init__(self, users=None, link='exports/users.csv', unavailable=False, on_link=None):
        self.users = users
        self.link = link
        self.unavailable = unavailable
        self.on_link = on_link
        self.loaded = []

    def export_link(self, run):
        from loyalty.settlement.errors import UpstreamUnavailable
        if self.on_link is not None:
            self.on_link(run)
        if self.unavailable:
            raise UpstreamUnavailable("export service is down")
        return self.link

    def load_users(self, link, method=None):
        from loyalty.settlement.errors import UpstreamUnavailable
        if self.unavailable or self.users is None:
            raise UpstreamUnavailable("export service is down")
        self.loaded.append(link)
        return self.users.copy()


@pytest.fixture
def users_frame(reference):
    """Three exported users spread over the seeded districts and segments."""
    nasr_city, maadi, dokki = reference['districts']
    cairo, giza = reference['governorates']
    gold, silver = reference['segments']
    return pd.DataFrame([
        {'user': 101, 'name': 'Ahmed Samir', 'phone': '01001234567', 'points': 120,
         'district': 'Nasr City', 'governorate': 'Cairo',
         'district_id': nasr_city.id, 'governorate_id': cairo.id, 'segment_id': gold.id},
        {'user': 102, 'name': 'Mona Adel', 'phone': '01007654321', 'points': 40,
         'district': 'Maadi', 'governorate': 'Cairo',
         'district_id': maadi.id, 'governorate_id': cairo.id, 'segment_id': silver.id},
        {'user': 103, 'name': 'Karim Fathy', 'phone': '01112223334', 'points': None,
         'district': 'Dokki', 'governorate': 'Giza',
         'district_id': dokki.id, 'governorate_id': giza.id, 'segment_id': gold.id},
    ])


@pytest.fixture
def fake_export():
    return FakeUserExport
