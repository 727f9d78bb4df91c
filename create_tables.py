from zara import create_app
from zara.extensions import db
from zara.models.machine import Machine, MachineStatus
from zara.models.user import User, Role
from zara.services import permission_gate

app = create_app()


def inicializar_bd():
    with app.app_context():
        print("🗑️  Borrando base de datos antigua...")
        try:
            db.drop_all()
            print("🏗️  Creando tablas nuevas con la estructura actualizada...")
            db.create_all()
        except UnicodeDecodeError as e:
            print("\n❌ ERROR DE CODIFICACIÓN EN LA CONEXIÓN A LA BASE DE DATOS")
            print("   Parece que tu contraseña o usuario en '.env' tiene caracteres especiales (tildes, ñ, etc).")
            print("   Por favor, reemplaza esos caracteres con su código URL (ej: 'ó' -> '%C3%B3').")
            print(f"   Detalle del error: {e}")
            return

        print("🌱 Insertando datos semilla (Seed Data)...")

        # ---------------------------------------------------------
        # 1. USUARIOS
        # ---------------------------------------------------------
        admin = User(name="Administrador Sistema", email="admin@zara.com", role=Role.ADMIN.value)
        manager = User(name="João Silva - Gestor", email="manager@zara.com", role=Role.MANAGER.value)
        leader_a = User(name="Maria Santos - Líder Turno A", email="leader@zara.com", role=Role.LEADER.value)
        leader_b = User(name="Carlos Oliveira - Líder Turno B", email="carlos.oliveira@zara.com", role=Role.LEADER.value)
        op_ana = User(name="Ana Costa - Operadora", email="operator@zara.com", role=Role.OPERATOR.value)
        op_pedro = User(name="Pedro Almeida - Operador", email="pedro.almeida@zara.com", role=Role.OPERATOR.value)

        db.session.add_all([admin, manager, leader_a, leader_b, op_ana, op_pedro])
        db.session.commit()

        # ---------------------------------------------------------
        # 2. MAQUINAS (todas PARADA: FUNCIONANDO solo con operación)
        # ---------------------------------------------------------
        maquinas = []
        for i in range(1, 11):
            maquinas.append(Machine(
                code=f"MAQ{i:03d}",
                name=f"Máquina {i:02d}",
                location=f"Setor {(i + 2) // 3}",
                status=MachineStatus.STOPPED.value,
                production_speed=2.5,
                target_production=1500
            ))
        db.session.add_all(maquinas)
        db.session.commit()

        # ---------------------------------------------------------
        # 3. PERMISOS (Ana: máquinas 1-5, Pedro: 6-10)
        # ---------------------------------------------------------
        flags = {'can_view': True, 'can_operate': True}
        permission_gate.bulk_grant(op_ana.id, [m.id for m in maquinas[:5]], flags, granted_by=admin.id)
        permission_gate.bulk_grant(op_pedro.id, [m.id for m in maquinas[5:]], flags, granted_by=admin.id)

        print("✅ ¡Base de datos creada y poblada exitosamente!")
        print(f"   Usuarios: {User.query.count()}  Máquinas: {Machine.query.count()}")


if __name__ == '__main__':
    inicializar_bd()
