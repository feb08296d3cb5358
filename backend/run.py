# File: backend/run.py
"""Application entry point."""
import os
import click
from flask.cli import with_appcontext
from rollcall import create_app, db
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Create Flask app
app = create_app(os.getenv('FLASK_ENV', 'development'))

@app.cli.command()
@with_appcontext
def create_db():
    """Create database tables."""
    db.create_all()
    click.echo('Database tables created successfully!')

@app.cli.command()
@with_appcontext
def drop_db():
    """Drop all database tables."""
    if click.confirm('Are you sure you want to drop all tables?'):
        db.drop_all()
        click.echo('Database tables dropped successfully!')

@app.cli.command()
@click.option('--group', 'group_name', default='CSC 301 - Group A', help='Group name')
@click.option('--rep', 'rep_id', default='rep-001', help='Class rep user id')
@click.option('--students', default=5, type=int, help='Number of demo students')
@with_appcontext
def seed_demo(group_name, rep_id, students):
    """Seed a demo group with a class rep and students."""
    from rollcall.models.group import Group, UserRole
    from rollcall.services.roster_service import RosterService
    from rollcall.utils.clock import now

    group = Group.query.filter_by(name=group_name).first()
    if not group:
        group = RosterService.create_group(
            group_name, rep_id,
            course_code='CSC301',
            course_title='Operating Systems',
            lecturer_name='Dr. Ada Obi'
        )
        RosterService.add_member(group.id, rep_id, 'Class Rep', now(), role=UserRole.CLASS_REP)

    for index in range(1, students + 1):
        student_id = f'stu-{index:03d}'
        if not RosterService.find_member(group.id, student_id):
            RosterService.add_member(group.id, student_id, f'Student {index}', now())

    click.echo(f'Group "{group.name}" (id {group.id}) seeded with {students} student(s).')

@app.cli.command()
@with_appcontext
def reset_db():
    """Reset database completely."""
    if click.confirm('This will delete all data and recreate tables. Continue?'):
        db.drop_all()
        db.create_all()
        click.echo('Database reset complete!')

if __name__ == '__main__':
    # Development server
    port = int(os.environ.get('PORT', 5000))
    host = os.environ.get('HOST', '127.0.0.1')
    debug = os.environ.get('FLASK_ENV') == 'development'

    if app.config.get('SCHEDULER_ENABLED') and (not debug or os.environ.get('WERKZEUG_RUN_MAIN')):
        from rollcall.services.lifecycle_scheduler import LifecycleScheduler
        LifecycleScheduler(app).start()

    app.run(host=host, port=port, debug=debug)
