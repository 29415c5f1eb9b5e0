# tests/test_population.py

import pytest
import pandas as pd

from loyalty.models import SettlementRun, MethodType
from loyalty.settlement.breakdown import EntityRef
from loyalty.settlement.errors import UpstreamUnavailable
from loyalty.settlement.population import ReferenceData, FileUserExportSource


def _run(**fields):
    values = dict(id=1, supplier_id=3, vertical_id=4, user_type_id=None, month=3, year=2024,
                  method=MethodType.USERS)
    values.update(fields)
    return SettlementRun(**values)


def test_segments_are_limited_to_supplier_and_vertical(reference):
    from loyalty import db
    from loyalty.models import Segment

    db.session.add_all([Segment(name='Shared'),
                        Segment(name='Foreign', supplier_id=reference['supplier'].id + 1)])
    db.session.commit()

    names = [ref.name for ref in ReferenceData().entities(MethodType.SEGMENT,
                                                           reference['supplier'].id,
                                                           reference['vertical'].id)]

    assert names == ['Gold', 'Silver', 'Shared']


def test_explicit_population_keeps_order_and_gets_names(reference):
    nasr_city, maadi, dokki = reference['districts']

    refs = ReferenceData().resolve_population(MethodType.DISTRICT, [dokki.id, EntityRef(nasr_city.id)])

    assert refs == [EntityRef(dokki.id, 'Dokki'), EntityRef(nasr_city.id, 'Nasr City')]


def test_unknown_reference_keeps_bare_id(reference):
    assert ReferenceData().lookup('user_type', 999) == EntityRef(999)


def test_export_link_finds_file_by_period(tmp_path):
    (tmp_path / '3_4_all_2024_03.xlsx').write_bytes(b'')
    (tmp_path / '3_4_all_2024_03.csv').write_text('')
    source = FileUserExportSource(str(tmp_path), ['.csv', '.xlsx'])

    assert source.export_link(_run()) == str(tmp_path / '3_4_all_2024_03.csv')
    assert source.export_link(_run(user_type_id=8)) is None


def test_missing_folder_is_unavailable(tmp_path):
    source = FileUserExportSource(str(tmp_path / 'nowhere'))

    with pytest.raises(UpstreamUnavailable):
        source.export_link(_run())


def test_load_users_validates_export(tmp_path):
    path = tmp_path / 'users.csv'
    pd.DataFrame({'user': [1], 'name': ['A'], 'phone': ['0100'], 'points': [5],
                  'district': ['Maadi'], 'governorate': ['Cairo']}).to_csv(path, index=False)
    source = FileUserExportSource(str(tmp_path))

    users = source.load_users(str(path), MethodType.USERS)
    assert users['user'].tolist() == [1]

    # The district join column is missing
    with pytest.raises(UpstreamUnavailable):
        source.load_users(str(path), MethodType.DISTRICT)


@pytest.mark.parametrize("filename", ['users.csv', 'users.xlsx'])
def test_phone_numbers_keep_leading_zero_in_ledger(tmp_path, filename):
    from loyalty.settlement.breakdown import AllBreakdown
    from loyalty.settlement.log_builder import build_log_frame, log_rows

    path = tmp_path / filename
    frame = pd.DataFrame({'user': [101, 102], 'name': ['Ahmed', 'Mona'],
                          'phone': ['01001234567', '01112223334'], 'points': [120, 40],
                          'district': ['Nasr City', 'Maadi'], 'governorate': ['Cairo', 'Cairo']})
    if filename.endswith('.csv'):
        frame.to_csv(path, index=False)
    else:
        frame.to_excel(path, index=False)

    users = FileUserExportSource(str(tmp_path)).load_users(str(path), MethodType.USERS)
    rows = log_rows(build_log_frame(AllBreakdown(value=5.0), users))

    assert [row['phone'] for row in rows] == ['01001234567', '01112223334']
    assert [row['user'] for row in rows] == [101, 102]
