from datetime import datetime, timezone, timedelta
from doubtdesk import create_app
from doubtdesk.firebase_init import get_auth
from doubtdesk import firestore_dao as dao
from doubtdesk import constants as C


def seed_database():
    app = create_app()
    with app.app_context():
        auth = get_auth()

        password = 'password123'

        print("Creating users...")

        def create_firebase_user(email, display_name, role, extra=None):
            try:
                fb_user = auth.create_user(email=email, password=password, display_name=display_name)
            except auth.EmailAlreadyExistsError:
                fb_user = auth.get_user_by_email(email)
            uid = fb_user.uid
            user_data = {
                'email': email,
                'displayName': display_name,
                'role': role,
            }
            if extra:
                user_data.update(extra)
            dao.create_user(uid, user_data)
            auth.set_custom_user_claims(uid, {'role': role})
            return uid

        print("Creating paper...")
        paper_id = dao.create_paper({
            'name': 'Data Structures',
            'code': 'CS201',
        }, paper_id='cs201')
        dao.create_topic(paper_id, {'name': 'Linked Lists', 'createdBy': C.SYSTEM_SENDER_ID})

        student_uid = create_firebase_user(
            'student@example.com', 'Asha Student', 'student', {'assignedPapers': [paper_id]}
        )
        faculty_uid = create_firebase_user(
            'faculty@example.com', 'Dr. Rao', 'faculty',
            {'assignedPapers': [paper_id], 'totalRating': 0, 'ratingCount': 0},
        )
        create_firebase_user('support@example.com', 'Tech Support', 'technical_support')
        create_firebase_user('admin@example.com', 'Admin', 'admin')

        print("Creating settings...")
        dao.set_global_settings({'presenceEnabled': True})

        print("Creating sample doubt...")
        doubt_id = dao.create_doubt({
            'title': 'Why does my reversal lose the head node?',
            'paperId': paper_id,
            'studentId': student_uid,
            'status': C.STATUS_UNASSIGNED,
            'assignedFacultyId': None,
            'slaDeadline': datetime.now(timezone.utc) + timedelta(minutes=30),
            'rated': False,
            'imageUrl': 'https://example.com/screenshot.png',
            'hasScreenshot': True,
        })

        print("\n" + "=" * 60)
        print("    Demo accounts (password: password123)")
        print("=" * 60)
        print("  Student:           student@example.com")
        print(f"  Faculty:           faculty@example.com ({faculty_uid})")
        print("  Technical support: support@example.com")
        print("  Admin:             admin@example.com")
        print(f"\n  Paper: {paper_id}   Sample doubt: {doubt_id}")
        print("=" * 60)
        print("Seeding complete!")


if __name__ == '__main__':
    seed_database()
