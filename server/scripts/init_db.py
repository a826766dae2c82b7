#!/usr/bin/env python3
# 数据库初始化脚本：建表、索引，并写入开发用的示例账户、商家、商品和订单

import os
import sys
import logging
from pathlib import Path

# 添加项目根目录到Python路径
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from db.manager import DatabaseManager
from db.schema import create_schema, TABLES
from db.order_operations import OrderOperations
from db.supporting_operations import SupportingOperations
from utils.config import Config

SAMPLE_PRODUCTS = [
    ('Ramo de rosas rojas', 89900, 20),
    ('Caja de chocolates artesanales', 45000, 4),
    ('Vela aromática de lavanda', 32000, 12),
]


def insert_initial_data(db_manager: DatabaseManager):
    """
    插入初始数据（可重复执行，已存在的账户不会重复创建）
    """
    support_ops = SupportingOperations(db_manager)
    order_ops = OrderOperations(db_manager)

    existing_admin = db_manager.execute_single(
        "SELECT user_id FROM users WHERE email = ?", ['admin@luzimarket.shop']
    ).fetchone()
    if existing_admin:
        logging.info("示例数据已存在，跳过")
        return

    support_ops.register_user(
        'admin@luzimarket.shop',
        os.getenv('LUZIMARKET_ADMIN_PASSWORD', 'admin123'),
        name='Administrador',
        role='admin'
    )
    logging.info("成功创建默认管理员账户")

    vendor_user = support_ops.register_user(
        'flores@luzimarket.shop',
        os.getenv('LUZIMARKET_VENDOR_PASSWORD', 'vendor123'),
        name='Flores del Valle'
    )
    vendor = support_ops.create_vendor(vendor_user['user_id'], 'Flores del Valle')
    logging.info(f"成功创建示例商家: {vendor['business_name']}")

    products = [support_ops.create_product(vendor['vendor_id'], name, price, stock)
                for name, price, stock in SAMPLE_PRODUCTS]

    customer = support_ops.register_user(
        'cliente@example.com',
        os.getenv('LUZIMARKET_CUSTOMER_PASSWORD', 'cliente123'),
        name='Cliente Demo'
    )

    order_ops.create_order(
        vendor['vendor_id'],
        [{'product_id': products[0]['product_id'], 'quantity': 1}],
        user_id=customer['user_id'],
        payment_status='paid',
        payment_reference='pi_demo_0001',
        order_number='LM-2401-AB12'
    )
    order_ops.create_order(
        vendor['vendor_id'],
        [{'product_id': products[2]['product_id'], 'quantity': 2}],
        guest_email='invitado@example.com',
        guest_name='Invitado Demo',
        payment_status='paid',
        payment_reference='pi_demo_0002'
    )
    logging.info("成功创建示例订单")


def main():
    """
    主函数：初始化数据库
    """
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    config = Config()
    db_config = config.get_database_config()
    db_path = db_config['path']

    logging.info(f"开始初始化数据库: {db_path}")
    logging.info(f"配置环境: {config.env}")

    try:
        with DatabaseManager(db_path, busy_timeout=float(db_config['busy_timeout_seconds'])) as db_manager:
            logging.info("创建数据表和索引...")
            create_schema(db_manager)

            if config.env != 'production':
                logging.info("插入初始数据...")
                insert_initial_data(db_manager)

            logging.info("执行数据库维护...")
            db_manager.perform_maintenance()

            logging.info("数据库初始化完成!")
            logging.info("数据表状态:")
            for table_name, _ in TABLES:
                info = db_manager.get_table_info(table_name)
                logging.info(f"  - {table_name}: {info['record_count']} 条记录")

    except Exception as e:
        logging.error(f"数据库初始化失败: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
