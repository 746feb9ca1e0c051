import json

import pytest

from compliance import models
from compliance.utils.parsers import parse_file_to_questions

QUESTION = {
    'text': 'Do you use a VPN on public networks?',
    'compliance_category': 'Network Security',
    'weight': 6,
    'target_audience': 'both',
    'options': [
        {'label': 'A', 'text': 'Always', 'weight': 100},
        {'label': 'B', 'text': 'Sometimes', 'weight': 50},
        {'label': 'C', 'text': 'Never', 'weight': 0},
    ],
}


@pytest.fixture
def admin_headers(make_account, auth_headers):
    return auth_headers(make_account(user_type=models.UserType.ADMIN))


def test_non_admin_cannot_manage_questions(client, make_account, auth_headers):
    headers = auth_headers(make_account())
    assert client.post('/admin/add-question', json=QUESTION, headers=headers).status_code == 403
    assert client.post('/questions/seed', headers=headers).status_code == 403


def test_question_crud(client, admin_headers):
    r = client.post('/admin/add-question', json=QUESTION, headers=admin_headers)
    assert r.status_code == 201
    created = r.json()
    assert [o['weight'] for o in created['options']] == [100, 50, 0]
    qid = created['id']

    updated = dict(QUESTION, text='Do you always use a VPN?', weight=8)
    r = client.put(f'/admin/update-question/{qid}', json=updated, headers=admin_headers)
    assert r.status_code == 200
    assert r.json()['weight'] == 8

    r = client.get(f'/admin/question/{qid}', headers=admin_headers)
    assert r.json()['text'] == 'Do you always use a VPN?'
    assert len(r.json()['options']) == 3

    assert [q['id'] for q in client.get('/admin/questions', headers=admin_headers).json()] == [qid]

    r = client.delete(f'/admin/delete-question/{qid}', headers=admin_headers)
    assert r.json() == {'id': qid, 'deleted': True, 'deactivated': False}
    assert client.get(f'/admin/question/{qid}', headers=admin_headers).status_code == 404


@pytest.mark.parametrize('change', [
    {'options': [{'label': 'A', 'text': 'Only', 'weight': 100}]},
    {'options': [{'label': 'A', 'text': 'x', 'weight': 100}, {'label': 'A', 'text': 'y', 'weight': 0}]},
    {'options': [{'label': 'A', 'text': 'x', 'weight': 120}, {'label': 'B', 'text': 'y', 'weight': 0}]},
    {'weight': 0},
    {'compliance_category': ''},
])
def test_malformed_questions_are_rejected(client, admin_headers, change):
    r = client.post('/admin/add-question', json=dict(QUESTION, **change), headers=admin_headers)
    assert r.status_code == 422


def test_answered_question_is_deactivated_not_deleted(client, admin_headers, make_account, auth_headers):
    qid = client.post('/admin/add-question', json=QUESTION, headers=admin_headers).json()['id']
    user_headers = auth_headers(make_account())
    client.post('/user/save-answer', headers=user_headers,
                json={'question_id': qid, 'selected_option': 'A', 'attempt_number': 1})
    r = client.delete(f'/admin/delete-question/{qid}', headers=admin_headers)
    assert r.json()['deactivated'] is True
    q = client.get(f'/admin/question/{qid}', headers=admin_headers).json()
    assert q['active'] is False
    assert q['responses'] == 1


def test_seed_endpoints(client, admin_headers):
    assert client.post('/questions/seed', headers=admin_headers).json()['added'] == 10
    assert len(client.get('/questions').json()) == 10
    assert client.post('/questions/seed/force', headers=admin_headers).json() == {'deleted': 10, 'deactivated': 0, 'inserted': 10}


def test_import_json_and_csv(client, admin_headers):
    payload = json.dumps([QUESTION, dict(QUESTION, options=[])]).encode()
    r = client.post('/admin/import-questions', headers=admin_headers,
                    files={'file': ('questions.json', payload, 'application/json')})
    assert r.status_code == 200
    body = r.json()
    assert body['created'] == 1
    assert [e['index'] for e in body['errors']] == [1]

    csv = (
        b'text,category,weight,target_audience,options\n'
        b'Do you use a VPN on public networks?,Network Security,6,both,A:Always:100|B:Never:0\n'
        b'Are laptops encrypted?,Device Security,9,company,A:Yes: all of them:100|B:No:0\n'
    )
    r = client.post('/admin/import-questions', headers=admin_headers,
                    files={'file': ('questions.csv', csv, 'text/csv')})
    assert r.json() == {'created': 1, 'skipped': 1, 'errors': []}

    r = client.post('/admin/import-questions', headers=admin_headers,
                    files={'file': ('questions.txt', b'nope', 'text/plain')})
    assert r.status_code == 400


def test_parse_csv_option_text_may_contain_colons():
    res = parse_file_to_questions(b'question,category,weight,options\nQ?,Cat,5,A:Yes: all:100|B:No\n', 'q.csv')
    assert res[0]['options'] == [
        {'label': 'A', 'text': 'Yes: all', 'weight': 100.0},
        {'label': 'B', 'text': 'No', 'weight': None},
    ]


def test_parse_json_accepts_older_export_keys():
    data = b'{"questions": [{"question": "Q1", "complianceCategory": "Auth", "weight": "4", "userType": "user",' \
           b' "options": [{"value": "A", "text": "Yes", "weight": 100}]}]}'
    [item] = parse_file_to_questions(data, 'export.json')
    assert item['text'] == 'Q1'
    assert item['compliance_category'] == 'Auth'
    assert item['weight'] == 4.0
    assert item['target_audience'] == 'individual'
    assert item['options'][0]['label'] == 'A'


def test_parse_rejects_unknown_extension():
    with pytest.raises(ValueError):
        parse_file_to_questions(b'', 'q.docx')


def test_account_administration(client, admin_headers, make_account):
    target = make_account(name='Target')
    users = client.get('/admin/users', headers=admin_headers).json()
    assert {u['name'] for u in users} >= {'Target'}
    r = client.put(f'/admin/users/{target.id}', json={'user_type': 'company', 'department': 'IT'},
                   headers=admin_headers)
    assert r.json()['permissions']['can_manage_company'] is True
    assert r.json()['department'] == 'IT'
    r = client.post('/admin/add-user', headers=admin_headers,
                    json={'email': 'new@example.com', 'password': 'pass123', 'name': 'New', 'user_type': 'admin'})
    assert r.status_code == 201
    assert client.delete(f'/admin/users/{target.id}', headers=admin_headers).json() == {'id': target.id, 'deleted': True}
    assert client.get(f'/admin/users/{target.id}', headers=admin_headers).status_code == 404


def test_account_with_history_cannot_be_deleted(client, admin_headers, make_account, auth_headers):
    target = make_account()
    client.get('/user/report', headers=auth_headers(target))
    assert client.delete(f'/admin/users/{target.id}', headers=admin_headers).status_code == 409
