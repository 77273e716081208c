from database import db

print("Dropping all tables...")
db.drop_all()

print("Creating all tables...")
db.create_all()

print("Database reset complete!")
